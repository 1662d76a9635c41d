"""
Utility functions
"""
import random
import string


def generate_connection_label(length: int = 9) -> str:
    """Generate a random label used to tell connections apart in logs"""
    alphabet = string.ascii_lowercase + string.digits
    return "conn_" + "".join(random.choice(alphabet) for _ in range(length))
