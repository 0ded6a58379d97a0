"""supplychain - crates.io 依赖图发布者审计工具"""

__version__ = "0.3.0"
