"""
KBRAG Setup Script

Install with: pip install -e .
Test extras:  pip install -e ".[test]"
"""

from setuptools import setup, find_packages

setup(
    name='kbrag',
    version='0.1.0',
    description='Knowledge retrieval engine for coaching chatbots - hybrid vector/keyword/graph RAG',
    packages=find_packages(include=['kbrag', 'kbrag.*']),
    package_data={
        'kbrag.config': ['*.yaml'],
    },
    install_requires=[
        'pydantic>=2.5.0',
        'pyyaml>=6.0.1',
        'numpy>=1.26.0',
        'structlog>=23.2.0',
        'falkordb>=1.0.0',
    ],
    extras_require={
        'test': [
            'pytest>=7.4.0',
            'pytest-asyncio>=0.23.0',
        ],
    },
    python_requires='>=3.11',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Intended Audience :: Developers',
        'License :: OSI Approved :: MIT License',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Topic :: Scientific/Engineering :: Artificial Intelligence',
        'Topic :: Text Processing :: Indexing',
    ],
)
