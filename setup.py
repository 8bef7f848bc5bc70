from setuptools import setup

setup(
    name="extension-threat-analyzer",
    version="0.1.0",
    description="Offline threat analysis engine for browser extensions",
    package_dir={"": "src"},
    py_modules=[
        "analyzer",
        "config",
        "errors",
        "heuristic_analyzer",
        "manifest_analyzer",
        "network_analyzer",
        "obfuscation_detector",
        "package_analyzer",
        "report_generator",
        "result_cache",
        "static_analyzer",
        "threat_classifier",
        "utils",
        "weights",
    ],
    install_requires=[
        "pyyaml>=6.0.1",
        "fastapi>=0.109.0",
        "uvicorn>=0.27.0",
        "python-multipart>=0.0.6",
        "pydantic>=2.0",
        "tqdm>=4.66.1",
        "colorama>=0.4.6",
        "python-dotenv>=1.0.0",
        "jinja2>=3.1.2",
        "markdown>=3.5.1",
        "esprima>=4.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "httpx>=0.25",
        ],
    },
    entry_points={
        "console_scripts": [
            "extension-threat-analyzer=analyzer:main",
        ],
    },
    python_requires=">=3.9",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Security",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.9",
    ],
)
