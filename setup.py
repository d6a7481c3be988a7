from setuptools import setup, find_packages

setup(
    name="privlisten",
    version="0.1.0",
    packages=find_packages(include=["privlisten", "privlisten.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "soundfile>=0.10.3",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    description="RTP/RTCP session engine for receiving private listening audio streams",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.7",
    entry_points={
        "console_scripts": [
            "privlisten=privlisten.cli:main",
        ],
    },
)
