from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from storefront.core.config import settings
from storefront.models.base import Base
# регистрируем все модели в Base.metadata до первого запроса
from storefront.models.product import Product  # noqa: F401
from storefront.models.cart_item import CartItem  # noqa: F401
from storefront.models.order import Order  # noqa: F401
from storefront.models.order_item import OrderItem  # noqa: F401


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,  # заказ после commit остаётся доступным без повторной загрузки
    class_=AsyncSession,
    autoflush=False,
)


async def get_db():
    """
    Dependency для FastAPI роутов.
    usage:
        async def handler(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with AsyncSessionLocal() as session:
        yield session
