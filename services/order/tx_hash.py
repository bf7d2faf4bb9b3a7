"""
交易哈希解析
从原始输入（哈希或区块浏览器链接）提取哈希、校验格式、生成浏览器链接，
并完成订单（processing -> completed）后通知客户
"""
import re
from dataclasses import dataclass
from typing import Optional
from models.order import Order
from services.notifier import NotificationInterface, notify_safely
from services.order.errors import ValidationError
from services.order.lifecycle import OrderService
from utils.logger import logger

TRON_HASH = re.compile(r"[0-9a-fA-F]{64}")
EVM_HASH = re.compile(r"0x[0-9a-fA-F]{64}")

# 浏览器域名 -> URL 中哈希的提取规则
EXPLORER_PATTERNS = {
    "tronscan.org": re.compile(r"transaction/([a-fA-F0-9]{64})(?![0-9a-fA-F])"),
    "etherscan.io": re.compile(r"tx/(0x[a-fA-F0-9]{64})(?![0-9a-fA-F])"),
    "bscscan.com": re.compile(r"tx/(0x[a-fA-F0-9]{64})(?![0-9a-fA-F])"),
    "polygonscan.com": re.compile(r"tx/(0x[a-fA-F0-9]{64})(?![0-9a-fA-F])"),
}

EXPLORER_LINKS = {
    "TRC20": "https://tronscan.org/#/transaction/{hash}",
    "ERC20": "https://etherscan.io/tx/{hash}",
    "BEP20": "https://bscscan.com/tx/{hash}",
    "POLYGON": "https://polygonscan.com/tx/{hash}",
}

EVM_NETWORKS = frozenset({"ERC20", "BEP20", "POLYGON"})


def extract_hash(raw: str) -> str:
    """浏览器链接中提取哈希，否则返回去除空白后的输入"""
    trimmed = (raw or "").strip()
    for domain, pattern in EXPLORER_PATTERNS.items():
        if domain in trimmed:
            match = pattern.search(trimmed)
            return match.group(1) if match else trimmed
    return trimmed


def validate_hash(tx_hash: str) -> bool:
    """64 位十六进制（TRON）或 0x + 64 位十六进制（EVM）"""
    return bool(TRON_HASH.fullmatch(tx_hash) or EVM_HASH.fullmatch(tx_hash))


def validate_hash_for_network(tx_hash: str, network: str) -> bool:
    if network == "TRC20":
        return bool(TRON_HASH.fullmatch(tx_hash))
    if network in EVM_NETWORKS:
        return bool(EVM_HASH.fullmatch(tx_hash))
    return validate_hash(tx_hash)


def explorer_link(tx_hash: str, network: str) -> str:
    template = EXPLORER_LINKS.get(network)
    if template is None:
        return "#"
    return template.format(hash=tx_hash)


@dataclass
class HashSendResult:
    order: Order
    explorer_link: str
    applied: bool
    notified: bool = False
    warning: Optional[str] = None


class HashResolver:
    def __init__(
        self,
        order_service: OrderService,
        notifier: Optional[NotificationInterface] = None,
        app_base_url: str = "",
    ):
        self.order_service = order_service
        self.notifier = notifier
        self.app_base_url = app_base_url.rstrip("/")

    def send_hash(self, order_id: str, raw_input: str, admin_id: str) -> HashSendResult:
        """记录交易哈希并完成订单；通知失败只返回警告，不回滚"""
        tx_hash = extract_hash(raw_input)
        if not tx_hash:
            raise ValidationError("请输入交易哈希")

        order = self.order_service.get_order(order_id)
        if not validate_hash_for_network(tx_hash, order.network):
            raise ValidationError(
                "Formato inválido. Hash deve ter 64 caracteres hexadecimais (ou 66 com prefixo 0x)"
            )

        result = self.order_service.complete(order_id, tx_hash, admin_id)
        link = explorer_link(tx_hash, result.order.network)
        send_result = HashSendResult(order=result.order, explorer_link=link, applied=result.applied)
        if not result.applied:
            return send_result

        logger.info(f"✅ 订单 {order_id} 已完成，哈希 {tx_hash}")
        send_result.notified, send_result.warning = self._notify_customer(result.order, tx_hash, link)
        return send_result

    def _notify_customer(self, order: Order, tx_hash: str, link: str):
        if self.notifier is None:
            return False, "Notificação desativada"

        email = self.order_service.contacts.resolve_email(order.user_id)
        if not email:
            warning = "Email do cliente não cadastrado. Atualize o perfil para enviar notificações."
            logger.warning(f"⚠️ {warning} (order={order.id})")
            return False, warning

        sent = notify_safely(self.notifier, "usdt-sent", email, {
            "nome_cliente": self.order_service.contacts.full_name(order.user_id),
            "ordem_id": order.id,
            "quantidade_usdt": str(order.amount),
            "carteira_destino": order.wallet_address,
            "transaction_hash": tx_hash,
            "link_explorer": link,
            "link_ordem": f"{self.app_base_url}/order/{order.id}",
            "valor_brl": f"{order.total:.2f}",
            "rede": order.network,
        })
        if not sent:
            return False, "Hash salva, mas houve erro ao enviar email ao cliente"
        return True, None
