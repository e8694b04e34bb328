from setuptools import setup, find_packages

setup(
    name="whisperqueue",
    version="0.1.0",
    description="Durable, resumable transcription job queue with local and remote execution",
    author="",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "rich>=12.5.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
        "psutil>=5.8.0",
    ],
    extras_require={
        "local": [
            "faster-whisper>=1.0.0",
        ],
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "whisperqueue=whisperqueue.main:main",
        ],
    },
)
