"""常量 - 集中管理硬编码名称和默认值"""

# 通知主题
TOPIC_NEW_ORDER = "new_order"
TOPIC_ORDER_UPDATE = "order_update"

# 下单默认值
DEFAULT_TAG_PREFIX = "copy_trading"
DEFAULT_VALIDITY = "DAY"
CHILD_TAG_INFIX = "_child_"

# 子账户复制并发上限
DEFAULT_FANOUT_CONCURRENCY = 4

# 对账循环
DEFAULT_RECONCILE_INTERVAL = 10.0
DEFAULT_COMPLETION_PROBABILITY = 0.3

# 子账户校验失败原因
REASON_CREDENTIAL_REJECTED = "credential_rejected"
REASON_VERIFICATION_FAILED = "verification_failed"
REASON_SELF_LINK = "self_link"
