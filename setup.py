from setuptools import setup, find_packages

with open("requirements.txt", "r", encoding="utf-8") as f:
    requirements = [line.strip() for line in f if line.strip() and not line.startswith("#")]

setup(
    name="stackpilot",
    version="0.1.0",
    description="Docker Compose stack lifecycle management for integration tests",
    author="dozey",
    author_email="dozeynwct@hotmail.com",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.0.0", "pytest-cov>=4.0.0"],
    },
    entry_points={
        "console_scripts": [
            "stackpilot=stackpilot.main:main",
        ],
        "pytest11": [
            "stackpilot=stackpilot.pytest_plugin",
        ],
    },
)
