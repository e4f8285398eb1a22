"""
业务异常：统一携带 HTTP 状态码与可直接返回给调用方的提示信息
"""


class ShopError(Exception):
    """业务异常基类"""
    status_code = 400
    default_message = "请求无法处理"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(ShopError):
    """购物车/地址等请求数据不合法，未产生任何副作用"""
    default_message = "请求参数校验失败"


class ProductUnavailable(ShopError):
    """商品不存在或已下架"""
    default_message = "商品不存在或已下架"

    def __init__(self, product_id, message: str = None):
        self.product_id = product_id
        super().__init__(message or f"商品 {product_id} 不存在或已下架")


class InsufficientStock(ShopError):
    """库存不足"""

    def __init__(self, product_name: str, requested: int, available: int):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        super().__init__(f"商品 {product_name} 库存不足")


class GatewayUnavailable(ShopError):
    """支付网关不可用；若订单已落库则保持 pending 且无支付会话"""
    status_code = 502
    default_message = "支付服务暂时不可用，请稍后重试"

    def __init__(self, message: str = None, order_number: str = None):
        self.order_number = order_number
        super().__init__(message)


class SignatureInvalid(ShopError):
    """Webhook 签名校验失败（不暴露具体哪一部分失败）"""
    default_message = "Webhook 签名无效"


class NotFoundError(ShopError):
    status_code = 404
    default_message = "资源不存在"


class PermissionDenied(ShopError):
    status_code = 403
    default_message = "无权访问该资源"


class InvalidStatusTransition(ShopError):
    """运营手工改状态时不允许的流转"""
    default_message = "不允许的订单状态变更"


class SubscriptionError(ShopError):
    default_message = "订阅无法创建"
