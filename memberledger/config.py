# memberledger/config.py
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DB_PATH_ENV = "MEMBER_LEDGER_DB_PATH"
DEFAULT_DB_NAME = "member-ledger.db"


@dataclass(frozen=True)
class LedgerConfig:
    """
    Policy and timing knobs handed to the contract, flows and nodes.

    authorized_issuer: organisation whose parties may create/edit members
    session_timeout:   seconds to wait for a counterparty message
    notary_timeout:    seconds to wait for the notary's verdict
    enforce_linear_id: contract rejects an Edit that changes the linear id
    """
    authorized_issuer: str = "PartyA"
    session_timeout: float = 30.0
    notary_timeout: float = 30.0
    enforce_linear_id: bool = True

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        defaults = cls()
        return cls(
            authorized_issuer=os.environ.get("MEMBER_LEDGER_AUTHORIZED_ISSUER", defaults.authorized_issuer),
            session_timeout=float(os.environ.get("MEMBER_LEDGER_SESSION_TIMEOUT", defaults.session_timeout)),
            notary_timeout=float(os.environ.get("MEMBER_LEDGER_NOTARY_TIMEOUT", defaults.notary_timeout)),
        )


def default_db_path(db_flag: Optional[Path] = None) -> Path:
    """Resolve DB path in this order:
    1. explicit path (e.g. --db flag)
    2. MEMBER_LEDGER_DB_PATH environment variable
    3. Default: ~/.member-ledger/member-ledger.db
    """
    if db_flag:
        return Path(db_flag).resolve()
    env_path = os.environ.get(DB_PATH_ENV)
    if env_path:
        return Path(env_path).resolve()
    return Path.home() / ".member-ledger" / DEFAULT_DB_NAME
