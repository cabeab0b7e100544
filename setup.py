from setuptools import setup, find_packages

setup(
    name="toolgateway",
    version="0.1.0",
    packages=find_packages(include=["toolgateway", "toolgateway.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.29",
        "pydantic>=2.7",
        "pydantic-settings>=2.7",
        "httpx>=0.27",
        "openai>=1.30,<3",
        "tiktoken>=0.7",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "toolgateway=toolgateway.app.main:run",
        ],
    },
)
