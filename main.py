from datetime import timedelta
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ReturnDocument

from cart import Cart, MongoCartStore
from config import Config
from coupons import CouponEvaluator
from database import create_document, db, get_documents, now_utc, oid, public
from deals import DealService
from errors import CouponRejected, NotFound, StoreError, ValidationFailed
from logger import logger
from notifications import NotificationService
from orders import OrderService
from payments import PaymentHandoff, RazorpayGateway
from reviews import ReviewService
from sellers import SellerService
from schemas import (
    Address, AddressBody, Banner, BannerBody, CartAddBody, CartKeyBody, CartQuantityBody,
    CheckoutBody, CouponApplyBody, CouponBody, CouponUpdate, DealBody, DealUpdate,
    OrderStatusBody, PaymentFailureBody, PaymentOrderBody, PaymentVerifyBody, Product,
    ProductBody, ProductUpdate, ReviewBody, SellerBody, SellerProfileBody, SellerStatusBody,
    SellerVerifyBody, discount_percent,
)

app = FastAPI(title="DressHub Storefront API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    content: Dict[str, Any] = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, CouponRejected):
        content["reason"] = exc.reason
    return JSONResponse(status_code=exc.status_code, content=content)


# ---------------------- Dependencies ----------------------

def get_db():
    if db is None:
        raise HTTPException(503, "Database not configured")
    return db


def get_clock():
    return now_utc


def get_gateway() -> Optional[RazorpayGateway]:
    return RazorpayGateway.from_config(Config)


def require_admin(x_admin_key: str = Header(None)):
    if x_admin_key != Config.ADMIN_KEY:
        raise HTTPException(401, "Unauthorized")


def coupon_service(database=Depends(get_db), clock=Depends(get_clock)) -> CouponEvaluator:
    return CouponEvaluator(database, clock)


def deal_service(database=Depends(get_db), clock=Depends(get_clock)) -> DealService:
    return DealService(database, clock)


def notification_service(database=Depends(get_db), clock=Depends(get_clock)) -> NotificationService:
    return NotificationService(database, clock)


def order_service(database=Depends(get_db), coupons: CouponEvaluator = Depends(coupon_service),
                  clock=Depends(get_clock),
                  notifications: NotificationService = Depends(notification_service)) -> OrderService:
    return OrderService(database, coupons, clock, delivery_days=Config.DELIVERY_DAYS, notifications=notifications)


def payment_service(database=Depends(get_db), orders: OrderService = Depends(order_service),
                    gateway: Optional[RazorpayGateway] = Depends(get_gateway),
                    clock=Depends(get_clock)) -> PaymentHandoff:
    return PaymentHandoff(database, orders, gateway, allow_test_payments=Config.ALLOW_TEST_PAYMENTS,
                          currency=Config.CURRENCY, store_name=Config.STORE_NAME, clock=clock)


def review_service(database=Depends(get_db), clock=Depends(get_clock)) -> ReviewService:
    return ReviewService(database, clock)


def seller_service(database=Depends(get_db), clock=Depends(get_clock)) -> SellerService:
    return SellerService(database, clock)


def load_cart(user_id: str = Query(...), database=Depends(get_db)) -> Cart:
    return Cart.load(user_id, MongoCartStore(database))


# ---------------------- Root & Health ----------------------

@app.get("/")
def read_root():
    return {"message": f"{Config.STORE_NAME} API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "payments": "razorpay" if RazorpayGateway.from_config(Config) else
                    ("test mode" if Config.ALLOW_TEST_PAYMENTS else "disabled"),
    }
    if db is None:
        return response
    response["database_name"] = db.name
    try:
        response["collections"] = db.list_collection_names()
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        response["database"] = f"⚠️ Connected but Error: {str(e)[:80]}"
    return response


@app.get("/schema")
def get_schema():
    import schemas as s

    def model_fields(m):
        return {k: str(v.annotation) for k, v in m.model_fields.items()}

    return {
        "models": {
            name.lower(): model_fields(getattr(s, name))
            for name in ("Product", "Address", "Coupon", "Deal", "Order", "OrderItem",
                         "OrderTracking", "Review", "Banner", "CartLine", "Seller", "Notification")
        }
    }


# ---------------------- Products ----------------------

@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, seller_id: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  limit: int = 50, database=Depends(get_db)):
    filt: Dict[str, Any] = {"is_active": True}
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    if category:
        filt["category"] = category
    if seller_id:
        filt["seller_id"] = seller_id
    price_cond = {}
    if min_price is not None:
        price_cond["$gte"] = min_price
    if max_price is not None:
        price_cond["$lte"] = max_price
    if price_cond:
        filt["price"] = price_cond
    return get_documents(database, "product", filt, sort=[("created_at", -1)], limit=limit)


@app.get("/products/{pid}")
def get_product(pid: str, database=Depends(get_db)):
    prod = database["product"].find_one({"_id": oid(pid)})
    if not prod:
        raise NotFound("Product not found")
    return public(prod)


@app.get("/products/{pid}/reviews")
def product_reviews(pid: str, reviews: ReviewService = Depends(review_service)):
    return reviews.for_product(pid)


@app.post("/admin/products", dependencies=[Depends(require_admin)])
def admin_create_product(body: ProductBody, database=Depends(get_db), clock=Depends(get_clock)):
    product = Product(**body.model_dump(), discount=discount_percent(body.price, body.mrp))
    pid = create_document(database, "product", product, clock())
    logger.info(f"Product {pid} created: {body.name}")
    return {"id": pid}


@app.put("/admin/products/{pid}", dependencies=[Depends(require_admin)])
def admin_update_product(pid: str, body: ProductUpdate, database=Depends(get_db), clock=Depends(get_clock)):
    existing = database["product"].find_one({"_id": oid(pid)})
    if not existing:
        raise NotFound("Product not found")
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    price = changes.get("price", existing["price"])
    mrp = changes.get("mrp", existing["mrp"])
    if price > mrp:
        raise ValidationFailed("price cannot exceed mrp")
    changes.update({"discount": discount_percent(price, mrp), "updated_at": clock()})
    updated = database["product"].find_one_and_update(
        {"_id": existing["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER,
    )
    return public(updated)


@app.delete("/admin/products/{pid}", dependencies=[Depends(require_admin)])
def admin_delete_product(pid: str, database=Depends(get_db)):
    res = database["product"].delete_one({"_id": oid(pid)})
    if not res.deleted_count:
        raise NotFound("Product not found")
    return {"ok": True}


# ---------------------- Addresses ----------------------

@app.get("/addresses")
def list_addresses(user_id: str = Query(...), database=Depends(get_db)):
    return get_documents(database, "address", {"user_id": user_id}, sort=[("created_at", -1)])


@app.post("/addresses")
def add_address(body: AddressBody, user_id: str = Query(...), database=Depends(get_db),
                clock=Depends(get_clock)):
    is_first = database["address"].count_documents({"user_id": user_id}) == 0
    address = Address(user_id=user_id, is_default=is_first, **body.model_dump())
    doc = {**address.model_dump(), "created_at": clock()}
    doc["_id"] = database["address"].insert_one(doc).inserted_id
    return public(doc)


# ---------------------- Banners ----------------------

@app.get("/banners")
def list_banners(database=Depends(get_db)):
    return get_documents(database, "banner", {"is_active": True}, sort=[("sort_order", 1)])


@app.post("/admin/banners", dependencies=[Depends(require_admin)])
def admin_add_banner(body: BannerBody, database=Depends(get_db), clock=Depends(get_clock)):
    return {"id": create_document(database, "banner", Banner(**body.model_dump()), clock())}


# ---------------------- Coupons ----------------------

@app.get("/coupons")
def list_active_coupons(coupons: CouponEvaluator = Depends(coupon_service)):
    return coupons.list_active()


@app.post("/coupons/apply")
def apply_coupon(body: CouponApplyBody, coupons: CouponEvaluator = Depends(coupon_service)):
    return coupons.evaluate(body.code, body.order_amount)


@app.get("/admin/coupons", dependencies=[Depends(require_admin)])
def admin_list_coupons(coupons: CouponEvaluator = Depends(coupon_service)):
    return coupons.list_all()


@app.post("/admin/coupons", dependencies=[Depends(require_admin)])
def admin_add_coupon(body: CouponBody, coupons: CouponEvaluator = Depends(coupon_service)):
    return coupons.create(body)


@app.put("/admin/coupons/{cid}", dependencies=[Depends(require_admin)])
def admin_update_coupon(cid: str, body: CouponUpdate, coupons: CouponEvaluator = Depends(coupon_service)):
    return coupons.update(cid, body)


@app.delete("/admin/coupons/{cid}", dependencies=[Depends(require_admin)])
def admin_delete_coupon(cid: str, coupons: CouponEvaluator = Depends(coupon_service)):
    coupons.delete(cid)
    return {"ok": True}


# ---------------------- Deals ----------------------

@app.get("/deals")
def list_active_deals(deals: DealService = Depends(deal_service)):
    return deals.list_active()


@app.get("/admin/deals", dependencies=[Depends(require_admin)])
def admin_list_deals(deals: DealService = Depends(deal_service)):
    return deals.list_all()


@app.post("/admin/deals", dependencies=[Depends(require_admin)])
def admin_add_deal(body: DealBody, deals: DealService = Depends(deal_service)):
    return deals.create(body)


@app.put("/admin/deals/{did}", dependencies=[Depends(require_admin)])
def admin_update_deal(did: str, body: DealUpdate, deals: DealService = Depends(deal_service)):
    return deals.update(did, body)


@app.delete("/admin/deals/{did}", dependencies=[Depends(require_admin)])
def admin_delete_deal(did: str, deals: DealService = Depends(deal_service)):
    deals.delete(did)
    return {"ok": True}


# ---------------------- Cart ----------------------

@app.get("/cart")
def get_cart(cart: Cart = Depends(load_cart)):
    return cart.to_dict()


@app.post("/cart/add")
def add_to_cart(body: CartAddBody, cart: Cart = Depends(load_cart), database=Depends(get_db)):
    doc = database["product"].find_one({"_id": oid(body.product_id), "is_active": True})
    if not doc:
        raise NotFound("Product not found")
    cart.add(Product.model_validate(public(doc)), body.size, body.color, body.quantity)
    return cart.to_dict()


@app.post("/cart/quantity")
def set_cart_quantity(body: CartQuantityBody, cart: Cart = Depends(load_cart)):
    cart.set_quantity(body.key, body.quantity)
    return cart.to_dict()


@app.post("/cart/remove")
def remove_from_cart(body: CartKeyBody, cart: Cart = Depends(load_cart)):
    cart.remove(body.key)
    return cart.to_dict()


@app.delete("/cart")
def clear_cart(cart: Cart = Depends(load_cart)):
    cart.clear()
    return cart.to_dict()


# ---------------------- Checkout & Payments (Razorpay) ----------------------

@app.post("/checkout/create-order")
def create_order(body: CheckoutBody, cart: Cart = Depends(load_cart),
                 orders: OrderService = Depends(order_service)):
    order = orders.create_order(
        cart.user_id,
        cart.lines,
        body.address_id,
        coupon_code=body.coupon_code,
        expected_total=body.expected_total,
        expected_discount=body.expected_discount,
        expected_subtotal=body.expected_subtotal,
    )
    cart.clear()
    return order


@app.post("/payment/begin")
def begin_payment(body: PaymentOrderBody, user_id: Optional[str] = None,
                  payments: PaymentHandoff = Depends(payment_service)):
    return payments.begin_payment(body.order_id, user_id)


@app.post("/payment/verify")
def payment_verify(body: PaymentVerifyBody, user_id: Optional[str] = None,
                   payments: PaymentHandoff = Depends(payment_service)):
    return payments.confirm(body.order_id, body.payment_id, body.signature, user_id)


@app.post("/payment/failure")
def payment_failure(body: PaymentFailureBody, user_id: Optional[str] = None,
                    payments: PaymentHandoff = Depends(payment_service)):
    return payments.fail(body.order_id, body.reason, body.payment_id, user_id)


@app.post("/payment/cancel")
def payment_cancel(body: PaymentOrderBody, user_id: Optional[str] = None,
                   payments: PaymentHandoff = Depends(payment_service)):
    return payments.cancel(body.order_id, user_id)


# ---------------------- Orders ----------------------

@app.get("/orders")
def list_orders(user_id: str = Query(...), orders: OrderService = Depends(order_service)):
    return orders.list_orders(user_id)


@app.get("/orders/{oid_str}")
def get_order(oid_str: str, user_id: Optional[str] = None, orders: OrderService = Depends(order_service)):
    return orders.get_order(oid_str, user_id)


@app.get("/orders/track/{oid_str}")
def track_order(oid_str: str, orders: OrderService = Depends(order_service)):
    order = orders.get_order(oid_str)
    return {
        "status": order["status"],
        "payment_status": order["payment_status"],
        "tracking_number": order.get("tracking_number"),
        "expected_delivery": order.get("expected_delivery"),
        "events": order["tracking"],
    }


@app.get("/admin/orders", dependencies=[Depends(require_admin)])
def admin_list_orders(orders: OrderService = Depends(order_service)):
    return orders.list_orders()


@app.put("/admin/orders/{oid_str}/status", dependencies=[Depends(require_admin)])
def admin_update_order_status(oid_str: str, body: OrderStatusBody, orders: OrderService = Depends(order_service)):
    return orders.update_status(oid_str, body.status, body.tracking_number, body.location)


# ---------------------- Sellers ----------------------

@app.get("/seller/orders")
def seller_orders(seller_id: str = Query(...), orders: OrderService = Depends(order_service)):
    return orders.seller_orders(seller_id)


@app.get("/seller/products")
def seller_products(seller_id: str = Query(...), database=Depends(get_db)):
    return get_documents(database, "product", {"seller_id": seller_id}, sort=[("created_at", -1)])


@app.get("/seller/profile")
def seller_profile(seller_id: str = Query(...), sellers: SellerService = Depends(seller_service)):
    return sellers.get(seller_id)


@app.put("/seller/profile")
def update_seller_profile(body: SellerProfileBody, seller_id: str = Query(...),
                          sellers: SellerService = Depends(seller_service)):
    return sellers.update_profile(seller_id, body)


@app.post("/seller/request-verification")
def request_seller_verification(seller_id: str = Query(...), sellers: SellerService = Depends(seller_service)):
    return sellers.request_verification(seller_id)


@app.get("/seller/notifications")
def seller_notifications(seller_id: str = Query(...),
                         notifications: NotificationService = Depends(notification_service)):
    return {"items": notifications.inbox(seller_id), "unread": notifications.unread_count(seller_id)}


@app.post("/seller/notifications/read-all")
def seller_read_all(seller_id: str = Query(...), notifications: NotificationService = Depends(notification_service)):
    return {"updated": notifications.mark_all_read(seller_id)}


@app.post("/seller/notifications/{nid}/read")
def seller_read_one(nid: str, seller_id: str = Query(...),
                    notifications: NotificationService = Depends(notification_service)):
    notifications.mark_read(nid, seller_id)
    return {"ok": True}


@app.get("/admin/sellers", dependencies=[Depends(require_admin)])
def admin_list_sellers(sellers: SellerService = Depends(seller_service)):
    return sellers.list_all()


@app.post("/admin/sellers", dependencies=[Depends(require_admin)])
def admin_add_seller(body: SellerBody, sellers: SellerService = Depends(seller_service)):
    return sellers.create(body)


@app.put("/admin/sellers/{sid}/verify", dependencies=[Depends(require_admin)])
def admin_verify_seller(sid: str, body: SellerVerifyBody, sellers: SellerService = Depends(seller_service)):
    return sellers.verify(sid, body.admin_id)


@app.put("/admin/sellers/{sid}/status", dependencies=[Depends(require_admin)])
def admin_seller_status(sid: str, body: SellerStatusBody, sellers: SellerService = Depends(seller_service)):
    return sellers.set_active(sid, body.is_active)


@app.get("/admin/notifications", dependencies=[Depends(require_admin)])
def admin_notifications(notifications: NotificationService = Depends(notification_service)):
    return {"items": notifications.inbox(), "unread": notifications.unread_count()}


@app.post("/admin/notifications/read-all", dependencies=[Depends(require_admin)])
def admin_read_all(notifications: NotificationService = Depends(notification_service)):
    return {"updated": notifications.mark_all_read()}


@app.post("/admin/notifications/{nid}/read", dependencies=[Depends(require_admin)])
def admin_read_one(nid: str, notifications: NotificationService = Depends(notification_service)):
    notifications.mark_read(nid)
    return {"ok": True}


# ---------------------- Reviews ----------------------

@app.get("/reviews/eligibility")
def review_eligibility(user_id: str = Query(...), product_id: str = Query(...),
                       orders: OrderService = Depends(order_service)):
    return {"can_review": orders.can_review(user_id, product_id)}


@app.post("/reviews")
def submit_review(body: ReviewBody, user_id: str = Query(...), reviews: ReviewService = Depends(review_service)):
    return reviews.submit(user_id, body)


# ---------------------- Seed Demo Data ----------------------

DEMO_PRODUCTS: List[Dict[str, Any]] = [
    {"name": "Banarasi Silk Saree", "category": "sarees", "price": 2499, "mrp": 4999,
     "sizes": ["Free Size"], "colors": ["Maroon", "Gold"]},
    {"name": "Anarkali Kurta Set", "category": "ethnic", "price": 1799, "mrp": 2999,
     "sizes": ["S", "M", "L", "XL"], "colors": ["Teal", "Pink"]},
    {"name": "Floral Wrap Dress", "category": "western", "price": 1299, "mrp": 1999,
     "sizes": ["XS", "S", "M", "L"], "colors": ["Blue", "White"]},
    {"name": "Sequin Party Gown", "category": "party", "price": 3499, "mrp": 5999,
     "sizes": ["S", "M", "L"], "colors": ["Black", "Silver"]},
    {"name": "Cotton Everyday Top", "category": "casual", "price": 499, "mrp": 799,
     "sizes": ["S", "M", "L", "XL"], "colors": ["White", "Yellow", "Olive"]},
    {"name": "Chikankari Kurti", "category": "ethnic", "price": 999, "mrp": 1499,
     "sizes": ["S", "M", "L"], "colors": ["White", "Peach"]},
]


@app.post("/admin/seed", dependencies=[Depends(require_admin)])
def seed(database=Depends(get_db), clock=Depends(get_clock)):
    now = clock()
    if database["product"].count_documents({}) == 0:
        docs = []
        for i, item in enumerate(DEMO_PRODUCTS, start=1):
            product = Product(
                description="Handpicked for the season.",
                discount=discount_percent(item["price"], item["mrp"]),
                images=[f"https://picsum.photos/seed/dress{i}/600/800"],
                stock=25,
                **item,
            )
            docs.append({**product.model_dump(), "created_at": now, "updated_at": now})
        database["product"].insert_many(docs)
    if database["coupon"].count_documents({}) == 0:
        database["coupon"].insert_many([
            {"code": "SAVE20", "description": "20% off up to ₹200 on orders above ₹500",
             "discount_type": "percentage", "discount_value": 20, "min_order_amount": 500,
             "max_discount_amount": 200, "valid_from": now, "valid_until": now + timedelta(days=30),
             "usage_limit": None, "usage_count": 0, "is_active": True, "created_at": now},
            {"code": "FLAT100", "description": "Flat ₹100 off on orders above ₹300",
             "discount_type": "fixed", "discount_value": 100, "min_order_amount": 300,
             "max_discount_amount": None, "valid_from": now, "valid_until": now + timedelta(days=30),
             "usage_limit": 500, "usage_count": 0, "is_active": True, "created_at": now},
        ])
    if database["deal"].count_documents({}) == 0:
        first = database["product"].find_one({}, sort=[("created_at", 1)])
        if first:
            database["deal"].insert_one({
                "product_id": str(first["_id"]), "discount_percentage": 30, "valid_from": now,
                "valid_until": now + timedelta(days=1), "is_active": True, "sort_order": 0,
                "created_at": now,
            })
    if database["banner"].count_documents({}) == 0:
        database["banner"].insert_many([
            {"title": "Festive Edit", "subtitle": "Up to 50% off sarees", "button_text": "Shop Now",
             "image_url": "https://picsum.photos/seed/banner1/1200/400", "link_url": "/category/sarees",
             "is_active": True, "sort_order": 0, "created_at": now},
            {"title": "New Arrivals", "subtitle": "Fresh western wear", "button_text": "Explore",
             "image_url": "https://picsum.photos/seed/banner2/1200/400", "link_url": "/category/western",
             "is_active": True, "sort_order": 1, "created_at": now},
        ])
    logger.info("Demo data seeded")
    return {"ok": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=Config.PORT)
