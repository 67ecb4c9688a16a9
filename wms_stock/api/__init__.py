# wms_stock/api/__init__.py
