from setuptools import setup, find_packages

setup(
    name="coding_memory",
    version="0.1.0",
    packages=find_packages(include=["coding_memory", "coding_memory.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        "numpy",
        # Entity graph neighbourhoods
        "networkx>=3.0",
        "tqdm>=4.60",
        # MCP stdio server
        "mcp>=1.0,<2",
    ],
    extras_require={
        # OpenAI embeddings (install separately when needed)
        "semantic": [
            "openai>=1.0",
        ],
        "test": [
            "pytest",
        ],
    },
    entry_points={
        "console_scripts": [
            "codingmem=coding_memory.cli:main",
        ],
    },
    description="Persistent, versioned, searchable memory for coding sessions.",
)
