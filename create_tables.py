# create_tables.py
# 本地快速建表（不走 alembic）：WMS_DATABASE_URL 指向的库里按 ORM 元数据 create_all

import asyncio

from wms_stock.db.base import Base, init_models
from wms_stock.db.session import close_engines, get_engine


async def main() -> None:
    init_models()
    print("正在创建所有数据库表...")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await close_engines()
    print("所有数据库表创建完成！")


if __name__ == "__main__":
    asyncio.run(main())
