from setuptools import setup, find_packages

setup(
    name="radiomonitor",
    version="0.1.0",
    description="Radio stream monitor that keeps transcribed spoken-word broadcasts",
    author="",
    python_requires=">=3.8",
    packages=find_packages(include=["radiomonitor", "radiomonitor.*"]),
    install_requires=[
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "radiomonitor=radiomonitor.main:main",
        ],
    },
)
