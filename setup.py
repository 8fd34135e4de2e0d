"""Setup configuration for the Infracord Discord bot."""

from setuptools import setup, find_packages

setup(
    name="infracord",
    version="0.0.1",
    description="A Discord bot managing moderation infractions and a guild member mirror",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord",
        "aiosqlite",
        "PyYAML",
        "python-dotenv",
        "prompt_toolkit",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "infracord=infracord.main:main",
        ],
    },
)
