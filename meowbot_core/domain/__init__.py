"""领域层模型与协议。

包含：
- models: SlideUnit / ChatMessage 数据模型与性格标签。
- conversation: 会话模型与 KeyValueStore 持久化协议。
- exceptions: 业务异常与错误分类记录。
"""
