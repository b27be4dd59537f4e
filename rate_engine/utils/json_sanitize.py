import math
from datetime import date, datetime

import numpy as np


def is_nan_or_inf(x) -> bool:
    return isinstance(x, (float, np.floating)) and (math.isnan(x) or math.isinf(x))


def clean_json_safe(obj):
    """Recursively convert numpy scalars and dates; NaN and Inf become None."""
    if obj is None:
        return None
    if isinstance(obj, (float, np.floating)):
        return None if is_nan_or_inf(obj) else float(obj)
    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    if isinstance(obj, (int, np.integer)):
        return int(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): clean_json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [clean_json_safe(v) for v in obj]
    return obj
