# wms_stock/schemas/__init__.py
