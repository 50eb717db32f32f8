from setuptools import setup, find_packages

setup(
    name="taskflow",
    version="0.1.0",
    description="Local file-persisted task queue with retrying workers",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "click>=8.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "taskflow=taskflow.cli:main",
        ],
    },
    python_requires=">=3.8",
)
