from setuptools import find_packages, setup

setup(
    name="chronicle-feeds",
    version="0.1.0",
    description="Aggregate RSS and Atom feeds into a deduplicated article set with durable read state",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "requests>=2.32.0",
        "beautifulsoup4>=4.12.0",
        "lxml>=5.0.0",
        "python-dateutil>=2.9.0",
    ],
    extras_require={
        "dev": ["pytest>=8.2.0"],
    },
    entry_points={
        "console_scripts": [
            "chronicle-feeds=chronicle_feeds.cli:main",
        ]
    },
)
