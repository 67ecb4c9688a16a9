# wms_stock/db/__init__.py
