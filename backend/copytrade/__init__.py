"""copytrade - 父子账户跟单复制后端

父账户下单后，订单被提交到券商、写入本地订单簿、推送给前端，
并复制到所有启用中的子账户；单个子账户失败不影响其他子账户。
"""

__version__ = "0.1.0"
