"""核心层：数据模型、异常定义和数据访问层"""
