# wms_stock/services/master_data.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from wms_stock.models.location import Location
from wms_stock.models.product import Product
from wms_stock.models.warehouse import Warehouse
from wms_stock.services.stock_errors import NotFound


class MasterDataService:
    """
    主数据边界：只做存在性查询。
    缺失或 is_deleted=True 一律视为 NotFound，使外层操作失败。
    """

    @staticmethod
    async def require_product(session: AsyncSession, product_id: int) -> Product:
        obj = await session.get(Product, int(product_id))
        if obj is None or obj.is_deleted:
            raise NotFound(f"product not found: {product_id}", context={"product_id": product_id})
        return obj

    @staticmethod
    async def require_warehouse(session: AsyncSession, warehouse_id: int) -> Warehouse:
        obj = await session.get(Warehouse, int(warehouse_id))
        if obj is None or obj.is_deleted:
            raise NotFound(
                f"warehouse not found: {warehouse_id}", context={"warehouse_id": warehouse_id}
            )
        return obj

    @staticmethod
    async def require_location(session: AsyncSession, location_id: int) -> Location:
        obj = await session.get(Location, int(location_id))
        if obj is None or obj.is_deleted:
            raise NotFound(
                f"location not found: {location_id}", context={"location_id": location_id}
            )
        return obj

    @staticmethod
    async def find_location_by_code(
        session: AsyncSession, warehouse_id: int, code: str
    ) -> Location | None:
        stmt = (
            select(Location)
            .where(Location.warehouse_id == int(warehouse_id))
            .where(Location.code == code)
            .where(Location.is_deleted.is_(False))
        )
        return (await session.execute(stmt)).scalars().first()

    @staticmethod
    async def first_location(session: AsyncSession, warehouse_id: int) -> Location | None:
        stmt = (
            select(Location)
            .where(Location.warehouse_id == int(warehouse_id))
            .where(Location.is_deleted.is_(False))
            .order_by(Location.id.asc())
            .limit(1)
        )
        return (await session.execute(stmt)).scalars().first()
