"""Setup configuration for feedaudit"""

from setuptools import setup, find_packages

setup(
    name="appveyor-feed-audit",
    version="0.1.0",
    description=(
        "CLI tool reconciling AppVeyor build history with the project's NuGet "
        "feed: unpublished, duplicate and misattributed packages."
    ),
    author="AppVeyor Feed Audit Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
        "tqdm>=4.64.0",
        "tzlocal>=5.0",
        "tzdata; sys_platform == 'win32'",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "appveyor-feed-audit=feedaudit.main:main",
        ],
    },
)
