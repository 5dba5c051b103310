"""Setup script for the weatherbot package."""

from setuptools import find_packages, setup

setup(
    name="weatherbot",
    version="0.1.0",
    description="Telegram bot relaying ESP32 weather station readings from MQTT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "pymysql",
        "pyyaml",
        "python-dotenv",
        "paho-mqtt>=2.0.0",
        "aiohttp>=3.9",
        "rich",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio",
            "black",
            "isort",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "weatherbot-relay=weatherbot.bot:main",
            "weatherbot-api=weatherbot.api:main",
            "weatherbot-display=weatherbot.display:main",
        ],
    },
)
