import time


def unix_now() -> int:
    """目前的 Unix 時間（秒）"""
    return int(time.time())
