from setuptools import setup, find_packages


setup(
    name="lookatni",
    version="0.1",
    packages=find_packages(include=["lookatni", "lookatni.*"]),
    description="Pack a directory of text files into one marker-delimited stream and extract it again.",
    author="vercingetorx",
    install_requires=[
        "python-dotenv>=1.0.0",
    ],
    entry_points={
        "console_scripts": [
            "lookatni=lookatni.cli:main",
        ]
    },
)
