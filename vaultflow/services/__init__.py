"""Service layer helpers"""

from .address import (
    AddressValidation,
    caip2_chain,
    chain_id_from_asset_type,
    chain_reference,
    format_account_id,
    is_ens_name,
    is_valid_evm_address,
    validate_address,
)
from .account import PredictedAccountResolver

__all__ = [
    "AddressValidation",
    "caip2_chain",
    "chain_id_from_asset_type",
    "chain_reference",
    "format_account_id",
    "is_ens_name",
    "is_valid_evm_address",
    "validate_address",
    "PredictedAccountResolver",
]
