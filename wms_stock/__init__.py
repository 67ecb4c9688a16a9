"""
wms_stock：多仓库存一致性内核（台账 / 余额 / 预留 / 四类单据工作流）。
"""

__version__ = "1.0.0"
