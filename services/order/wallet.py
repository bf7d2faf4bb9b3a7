"""
钱包地址校验（按网络）
"""
import re
from typing import Optional, Tuple

TRON_ADDRESS = re.compile(r"T[a-zA-Z0-9]{33}")
EVM_ADDRESS = re.compile(r"0x[a-fA-F0-9]{40}")


def validate_wallet_address(address: Optional[str], network: str) -> Tuple[bool, Optional[str]]:
    """校验钱包地址，返回 (是否有效, 错误信息)"""
    address = (address or "").strip()
    if not address:
        return False, "Endereço da carteira é obrigatório"

    if network == "TRC20":
        if not address.startswith("T"):
            return False, 'Endereço TRC20 deve começar com "T"'
        if len(address) != 34:
            return False, "Endereço TRC20 deve ter 34 caracteres"
        if not TRON_ADDRESS.fullmatch(address):
            return False, "Endereço TRC20 contém caracteres inválidos"
        return True, None

    if network in ("ERC20", "BEP20", "POLYGON"):
        label = "Polygon" if network == "POLYGON" else network
        if not address.startswith("0x"):
            return False, f'Endereço {label} deve começar com "0x"'
        if len(address) != 42:
            return False, f"Endereço {label} deve ter 42 caracteres"
        if not EVM_ADDRESS.fullmatch(address):
            return False, f"Endereço {label} contém caracteres inválidos"
        return True, None

    return False, "Rede blockchain não suportada"


def format_wallet_address(address: str) -> str:
    """展示用：前 6 位 + 后 4 位"""
    if len(address) < 12:
        return address
    return f"{address[:6]}...{address[-4:]}"
