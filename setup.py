"""
Setup configuration for mockforge package.
"""

from setuptools import setup, find_packages

setup(
    name="mockforge",
    version="0.1.0",
    description="Image synthesis for prompt-generated UI mockups",
    packages=find_packages(include=["mockforge", "mockforge.*"]),
    python_requires=">=3.9",
    install_requires=[
        "click>=8.1",
        "google-genai>=1.0",
        "logfire>=2.0",
        "pydantic>=2.5",
        "python-dotenv>=1.0",
        "tenacity>=8.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "mockforge=mockforge.cli.main:cli",
        ],
    },
)
