import os
from decimal import Decimal
from dotenv import load_dotenv
from contextlib import contextmanager
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine as create_sqlmodel_engine


load_dotenv()

class Settings:
    def __init__(self, db_conn_str: str = None):
        self.db_url = os.getenv("DATABASE")
        self.db_name=os.getenv("DATANAME")
        self.db_user=os.getenv("DATAUSER")
        self.db_password=os.getenv("DATAPASS")
        self.db_port=os.getenv("DATEPORT")
        #创建链接字符，DATABASE_URL 优先（测试使用 sqlite）
        self.db_conn_str = db_conn_str or os.getenv("DATABASE_URL") or (
            f"postgresql://{self.db_user}:{self.db_password}@{self.db_url}:{self.db_port}/{self.db_name}"
        )
        self.pool_size = 10 #连接池大小
        self.max_overflow = 20 #最大溢出连接数
        self.echo = os.getenv("DB_ECHO", "false").lower() == "true"

        # 价格
        self.price_symbol = os.getenv("PRICE_SYMBOL", "USDT/BRL")
        self.price_markup = Decimal(os.getenv("PRICE_MARKUP", "0.01"))  # 1% 加价
        self.price_poll_seconds = int(os.getenv("PRICE_POLL_SECONDS", "5"))

        # 订单
        self.trading_lock_seconds = int(os.getenv("TRADING_LOCK_SECONDS", "120"))
        self.payment_window_seconds = int(os.getenv("PAYMENT_WINDOW_SECONDS", "300"))
        self.max_receipts = int(os.getenv("MAX_RECEIPTS", "7"))
        self.min_order_amount = Decimal(os.getenv("MIN_ORDER_AMOUNT", "100"))
        self.sweep_interval_seconds = int(os.getenv("SWEEP_INTERVAL_SECONDS", "60"))

        # 存储
        self.storage_root = os.getenv("STORAGE_ROOT", os.path.join(os.getcwd(), "storage"))
        self.receipt_bucket = os.getenv("RECEIPT_BUCKET", "receipts")
        self.signed_url_secret = os.getenv("SIGNED_URL_SECRET", "change-me")
        self.signed_url_ttl = int(os.getenv("SIGNED_URL_TTL", "3600"))

        # 通知
        self.notify_webhook_url = os.getenv("NOTIFY_WEBHOOK_URL", "")
        self.operator_email = os.getenv("OPERATOR_EMAIL", "")
        self.app_base_url = os.getenv("APP_BASE_URL", "http://localhost:8080")

        if self.db_conn_str.startswith("sqlite"):
            # sqlite 内存库需要在线程间共享同一个连接
            self.engine = create_sqlmodel_engine(
                self.db_conn_str,
                echo=self.echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self.engine = create_sqlmodel_engine(self.db_conn_str,pool_size=self.pool_size,max_overflow=self.max_overflow,echo=self.echo)

    def create_tables(self):
        """创建所有数据表"""
        # 导入模型以注册到 metadata
        import models  # noqa: F401
        SQLModel.metadata.create_all(self.engine)

    @contextmanager
    def get_session(self):
        session = Session(self.engine, expire_on_commit=False)
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
