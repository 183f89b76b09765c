"""
CodeRelay / 代码中继
Codebase context engine for local language models
面向本地大模型的代码库上下文引擎
"""

__version__ = "0.3.0"
