"""
Codebase Module / 代码库模块
Symbol index, scored file search and content search
符号索引、评分文件搜索与内容搜索
"""

from .analyzers import GenericAnalyzer, PythonAnalyzer, ScriptAnalyzer, SymbolAnalyzer, extract_symbols
from .indexer import CodebaseIndexer

__all__ = [
    "CodebaseIndexer",
    "SymbolAnalyzer",
    "PythonAnalyzer",
    "ScriptAnalyzer",
    "GenericAnalyzer",
    "extract_symbols",
]
