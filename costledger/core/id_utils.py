import shortuuid


def generate_shortuuid() -> str:
    return shortuuid.uuid()


def generate_reference_code(prefix: str, length: int = 8) -> str:
    return f"{prefix}-{shortuuid.ShortUUID().random(length=length).upper()}"
