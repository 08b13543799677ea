from setuptools import setup, find_packages

setup(
    name="feedsync",
    version="0.1.0",
    packages=find_packages(include=["feed", "feed.*", "activity", "activity.*", "host", "host.*"]),
    install_requires=[
        "python-socketio",
        "aiohttp",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "opentelemetry-api",
        "opentelemetry-sdk",
        "opentelemetry-exporter-otlp-proto-http",
        "pytest",
        "pytest-mock",
        "pytest-asyncio",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "feedsync=host.main:main",
        ],
    },
    python_requires=">=3.8",
)
