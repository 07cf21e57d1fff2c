from pathlib import Path

from itsdangerous import BadData, URLSafeTimedSerializer

from config import get_settings
from domain import StatementMetadata

PENDING_MAX_AGE_SECS = 24 * 3600


def _serializer() -> URLSafeTimedSerializer:
    settings = get_settings()
    return URLSafeTimedSerializer(settings.token_secret, salt="pending-statement")


def sign_pending_statement(metadata: StatementMetadata, statement_path: Path) -> str:
    """Token carrying an uploaded statement through the unknown-merchant round trip."""
    return _serializer().dumps(
        {
            "y": metadata.year,
            "m": metadata.month,
            "u": metadata.user,
            "s": metadata.statement_name,
            "p": str(statement_path),
        }
    )


def load_pending_statement(
    token: str, max_age_secs: int = PENDING_MAX_AGE_SECS
) -> tuple[StatementMetadata, Path]:
    try:
        data = _serializer().loads(token, max_age=max_age_secs)
    except BadData as exc:
        raise ValueError("Invalid or expired pending statement token") from exc
    try:
        metadata = StatementMetadata(
            year=int(data["y"]),
            month=int(data["m"]),
            user=str(data["u"]),
            statement_name=str(data["s"]),
        )
        path = Path(data["p"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError("Malformed pending statement token") from exc
    return metadata, path
