import json
import os
import re
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import click
from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import JWTManager, get_jwt, get_jwt_identity, jwt_required
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix

from catalog import (
    USER_EDITABLE_FIELDS,
    category_store,
    frame_store,
    normalize_category_name,
    product_store,
    user_store,
)
from object_storage import DEFAULT_ALLOWED_EXTENSIONS, ObjectStorage, UploadError
from order_reader import (
    MissingOrderIdentifier,
    filter_orders,
    migrate_order_document,
    normalize_order,
    normalize_orders,
    order_statuses,
)
from records import parse_object_id, safe_float, safe_string, utcnow
from roles import RoleAssignmentError, grant_admin_role
from schemas import ORDER_STATUSES
from session_gate import InvalidCredentials, SessionGate, has_admin_claim

load_dotenv()

EXTENSION_KEY = "framecraft"


class AdminServices:
    """Everything the admin routes need, created once per application."""

    def __init__(self, db, storage: ObjectStorage, session_gate: SessionGate):
        self.db = db
        self.storage = storage
        self.session_gate = session_gate
        self.categories = category_store(db)
        self.products = product_store(db)
        self.frames = frame_store(db)
        self.users = user_store(db)


def build_allowed_origins() -> List[str]:
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:4173",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
        os.getenv("ADMIN_FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    return [origin for origin in allowed_origins if origin]


def create_app(test_config: Optional[Dict] = None, db=None) -> Flask:
    """Create and configure the admin API.

    ``db`` may be any pymongo-compatible database handle; when omitted one is
    opened from ``MONGO_URI``.
    """
    app = Flask(__name__)

    # Honor proxy headers so upload URLs keep the public HTTPS origin.
    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        trusted_proxy_hops = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        trusted_proxy_hops = 1
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["JWT_SECRET_KEY"] = os.getenv(
        "JWT_SECRET_KEY", "change-me-in-production"
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = False
    app.config["MONGO_URI"] = os.getenv(
        "MONGO_URI", "mongodb://localhost:27017/framecraft"
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )
    app.config["ALLOWED_IMAGE_EXTENSIONS"] = set(DEFAULT_ALLOWED_EXTENSIONS)
    app.config["ADMIN_EMAIL"] = (os.getenv("ADMIN_EMAIL") or "").strip()
    app.config["ADMIN_PASSWORD"] = os.getenv("ADMIN_PASSWORD") or ""

    if test_config:
        app.config.update(test_config)

    # Raises ConfigurationError when the admin credentials are missing.
    session_gate = SessionGate(app.config["ADMIN_EMAIL"], app.config["ADMIN_PASSWORD"])

    # --- Initialize extensions ---
    CORS(app, supports_credentials=True, origins=build_allowed_origins() or "*")

    jwt = JWTManager(app)
    if db is None:
        db = PyMongo(app).db

    storage = ObjectStorage(
        app.config["UPLOAD_FOLDER"], app.config["ALLOWED_IMAGE_EXTENSIONS"]
    )
    services = AdminServices(db, storage, session_gate)
    app.extensions[EXTENSION_KEY] = services

    categories = services.categories
    products = services.products
    frames = services.frames
    users = services.users

    email_regex = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

    @jwt.token_in_blocklist_loader
    def is_token_revoked(jwt_header, jwt_payload):
        return session_gate.is_revoked(jwt_payload.get("jti"))

    @jwt.unauthorized_loader
    def missing_token(reason):
        return jsonify({"message": "Please sign in to continue."}), 401

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return jsonify({"message": "Your session is not valid. Please sign in again."}), 401

    @jwt.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):
        return jsonify({"message": "You have been signed out. Please sign in again."}), 401

    @app.errorhandler(PyMongoError)
    def database_unavailable(exc):
        app.logger.error("Database request failed: %s", exc)
        return (
            jsonify(
                {"message": "The database is unavailable right now. Please try again."}
            ),
            503,
        )

    # --- Helpers ---

    def require_admin_session():
        claims = get_jwt()
        if has_admin_claim(claims):
            return claims, None
        return (
            None,
            (
                jsonify(
                    {"message": "You need additional permissions to perform this action."}
                ),
                403,
            ),
        )

    def read_json_object() -> Dict:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def read_payload() -> Dict:
        payload = request.form.to_dict() if request.form else {}
        return payload or read_json_object()

    def parse_json_list(value):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        if isinstance(value, str):
            candidate = value.strip()
            if not candidate:
                return []
            try:
                parsed = json.loads(candidate)
            except (TypeError, ValueError):
                return []
            return parsed if isinstance(parsed, list) else []
        return []

    def parse_price(payload: Dict, field: str = "price"):
        price_value = safe_float(payload.get(field, ""), None)
        if price_value is None:
            return None, "Price must be a valid number."
        if price_value < 0:
            return None, "Price cannot be negative."
        return round(price_value, 2), None

    def upload_base_url() -> str:
        return request.host_url

    def uploaded_file(field: str = "image"):
        if not request.files:
            return None
        upload = request.files.get(field)
        if upload and getattr(upload, "filename", ""):
            return upload
        return None

    def remove_stored_image(reference: Optional[str]):
        if not reference:
            return
        try:
            storage.delete(reference)
        except OSError as exc:
            app.logger.warning("Unable to remove stored image %s: %s", reference, exc)

    def find_order_document(order_id: str):
        object_id = parse_object_id(order_id)
        if object_id is not None:
            document = db.orders.find_one({"_id": object_id})
            if document:
                return document
        return db.orders.find_one({"_id": order_id})

    def is_valid_email(value: Optional[str]) -> bool:
        normalized = safe_string(value).lower()
        return bool(normalized and email_regex.match(normalized))

    # --- Routes ---

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(storage.root, filename)

    # Session

    @app.route("/api/admin/session", methods=["POST"])
    def sign_in():
        payload = read_json_object()
        email = payload.get("email")
        try:
            token = session_gate.sign_in(email, payload.get("password"))
        except InvalidCredentials:
            app.logger.warning("Rejected admin sign-in for %s", safe_string(email))
            return jsonify({"message": "Invalid credentials"}), 401

        app.logger.info("Admin signed in")
        return jsonify(
            {
                "token": token,
                "user": {"isAdmin": True, "email": session_gate.admin_email},
            }
        )

    @app.route("/api/admin/session", methods=["GET"])
    @jwt_required()
    def current_session():
        return jsonify(
            {
                "user": {
                    "isAdmin": has_admin_claim(get_jwt()),
                    "email": get_jwt_identity(),
                }
            }
        )

    @app.route("/api/admin/session", methods=["DELETE"])
    @jwt_required()
    def sign_out():
        session_gate.sign_out(get_jwt()["jti"])
        return jsonify({"message": "Signed out."})

    # Orders

    @app.route("/api/admin/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        query: Dict[str, object] = {}
        user_id = safe_string(request.args.get("userId"))
        if user_id:
            query["userId"] = user_id

        all_orders = normalize_orders(db.orders.find(query))
        visible = filter_orders(
            all_orders, request.args.get("search"), request.args.get("status")
        )
        return jsonify(
            {
                "orders": [order.to_json() for order in visible],
                "total": len(all_orders),
                "statuses": order_statuses(all_orders),
            }
        )

    @app.route("/api/admin/orders/<order_id>", methods=["GET"])
    @jwt_required()
    def get_order(order_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        document = find_order_document(order_id)
        if not document:
            return jsonify({"message": "Order not found."}), 404
        try:
            order = normalize_order(document)
        except MissingOrderIdentifier:
            return jsonify({"message": "Order not found."}), 404
        return jsonify({"order": order.to_json()})

    @app.route("/api/admin/orders/<order_id>/status", methods=["PUT"])
    @jwt_required()
    def update_order_status(order_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_json_object()
        desired_status = safe_string(payload.get("status")).lower()
        if desired_status not in ORDER_STATUSES:
            return (
                jsonify(
                    {"message": f"Status must be one of: {', '.join(ORDER_STATUSES)}."}
                ),
                400,
            )

        document = find_order_document(order_id)
        if not document:
            return jsonify({"message": "Order not found."}), 404

        db.orders.update_one(
            {"_id": document["_id"]},
            {"$set": {"status": desired_status, "updatedAt": utcnow()}},
        )
        updated = db.orders.find_one({"_id": document["_id"]})
        app.logger.info("Order %s moved to %s", order_id, desired_status)
        return jsonify(
            {
                "message": f"Order status updated to {desired_status}.",
                "order": normalize_order(updated).to_json(),
            }
        )

    @app.route("/api/admin/orders/<order_id>", methods=["DELETE"])
    @jwt_required()
    def delete_order(order_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        document = find_order_document(order_id)
        if not document:
            return jsonify({"message": "Order not found."}), 404

        db.orders.delete_one({"_id": document["_id"]})
        app.logger.info("Deleted order %s", order_id)
        return jsonify({"message": "Order deleted.", "order": {"id": order_id}})

    # Categories

    @app.route("/api/admin/categories", methods=["GET"])
    @jwt_required()
    def list_categories():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error
        return jsonify({"categories": categories.list_all()})

    @app.route("/api/admin/categories", methods=["POST"])
    @jwt_required()
    def create_category():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_payload()
        name_value = normalize_category_name(payload.get("name"))
        if not name_value:
            return jsonify({"message": "A category name is required."}), 400

        fields = categories.clean_fields({**payload, "name": name_value})
        category = categories.create(fields)
        app.logger.info("Created category %s", category["id"])
        return (
            jsonify({"message": "Category created successfully.", "category": category}),
            201,
        )

    @app.route("/api/admin/categories/<category_id>", methods=["PUT"])
    @jwt_required()
    def update_category(category_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_payload()
        if "name" in payload:
            payload["name"] = normalize_category_name(payload.get("name"))
            if not payload["name"]:
                return jsonify({"message": "A category name is required."}), 400

        category = categories.update(category_id, categories.clean_fields(payload))
        if not category:
            return jsonify({"message": "Category not found."}), 404
        return jsonify({"message": "Category updated.", "category": category})

    @app.route("/api/admin/categories/<category_id>", methods=["DELETE"])
    @jwt_required()
    def delete_category(category_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        category_document = categories.delete(category_id)
        if not category_document:
            return jsonify({"message": "Category not found."}), 404

        # Products keep their category text; nothing cascades.
        category_name = category_document.get("name", "")
        referencing = db.products.count_documents({"category": category_name})
        if referencing:
            app.logger.warning(
                "Category %r deleted while %s product(s) still reference it",
                category_name,
                referencing,
            )

        return jsonify(
            {
                "message": f'"{category_name or "Category"}" has been removed.',
                "category": {"id": str(category_document["_id"])},
                "referencingProducts": referencing,
            }
        )

    # Products

    @app.route("/api/admin/products", methods=["GET"])
    @jwt_required()
    def list_products():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error
        return jsonify({"products": products.list_all()})

    @app.route("/api/admin/products", methods=["POST"])
    @jwt_required()
    def create_product():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_payload()
        name = safe_string(payload.get("name"))
        if not name:
            return jsonify({"message": "A product name is required."}), 400

        price_value, price_error = parse_price(payload)
        if price_error:
            return jsonify({"message": price_error}), 400

        image_reference = safe_string(payload.get("image"))
        upload = uploaded_file()
        if upload:
            try:
                image_reference = storage.upload(
                    upload, storage.product_key(upload), upload_base_url()
                )
            except UploadError as exc:
                return jsonify({"message": str(exc)}), 400

        fields = products.clean_fields(
            {
                **payload,
                "name": name,
                "price": price_value,
                "image": image_reference,
                "sizes": parse_json_list(payload.get("sizes")),
            }
        )
        product = products.create(fields)
        app.logger.info("Created product %s", product["id"])
        return (
            jsonify({"message": "Product added successfully.", "product": product}),
            201,
        )

    @app.route("/api/admin/products/<product_id>", methods=["PUT"])
    @jwt_required()
    def update_product(product_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_payload()
        if "name" in payload and not safe_string(payload.get("name")):
            return jsonify({"message": "A product name is required."}), 400
        if "price" in payload:
            payload["price"], price_error = parse_price(payload)
            if price_error:
                return jsonify({"message": price_error}), 400
        if "sizes" in payload:
            payload["sizes"] = parse_json_list(payload.get("sizes"))

        existing = products.find_document(product_id)
        if existing is None:
            return jsonify({"message": "Product not found."}), 404

        upload = uploaded_file()
        if upload:
            try:
                payload["image"] = storage.upload(
                    upload, storage.product_key(upload), upload_base_url()
                )
            except UploadError as exc:
                return jsonify({"message": str(exc)}), 400

        product = products.update(product_id, products.clean_fields(payload))
        if not product:
            return jsonify({"message": "Product not found."}), 404
        previous_image = existing.get("image")
        if upload and previous_image and previous_image != product["image"]:
            remove_stored_image(previous_image)
        return jsonify({"message": "Product updated.", "product": product})

    @app.route("/api/admin/products/<product_id>", methods=["DELETE"])
    @jwt_required()
    def delete_product(product_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        product_document = products.delete(product_id)
        if not product_document:
            return jsonify({"message": "Product not found."}), 404
        remove_stored_image(product_document.get("image"))
        app.logger.info("Deleted product %s", product_id)
        return jsonify({"message": "Product removed successfully."})

    # Frames

    @app.route("/api/admin/frames", methods=["GET"])
    @jwt_required()
    def list_frames():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error
        return jsonify({"frames": frames.list_all()})

    @app.route("/api/admin/frames", methods=["POST"])
    @jwt_required()
    def create_frame():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_payload()
        name = safe_string(payload.get("name"))
        upload = uploaded_file()
        if not name or not upload:
            return (
                jsonify({"message": "Please provide a name and image for the frame."}),
                400,
            )
        try:
            storage.clean_filename(upload)
        except UploadError as exc:
            return jsonify({"message": str(exc)}), 400

        price_value, price_error = parse_price(payload)
        if price_error:
            return jsonify({"message": price_error}), 400

        # Insert first so the upload can be keyed by the new frame id.
        frame = frames.create(
            frames.clean_fields(
                {
                    **payload,
                    "name": name,
                    "price": price_value,
                    "image": "",
                    "availableSizes": parse_json_list(payload.get("availableSizes")),
                }
            )
        )

        try:
            image_url = storage.upload(
                upload, storage.frame_key(frame["id"], upload), upload_base_url()
            )
        except UploadError as exc:
            app.logger.error("Image upload failed for frame %s: %s", frame["id"], exc)
            return (
                jsonify(
                    {
                        "message": "The frame was saved but its image could not be uploaded. Retry the upload.",
                        "frame": frame,
                    }
                ),
                500,
            )

        frame = frames.update(frame["id"], {"image": image_url})
        app.logger.info("Created frame %s", frame["id"])
        return jsonify({"message": "Frame added successfully.", "frame": frame}), 201

    @app.route("/api/admin/frames/<frame_id>", methods=["PUT"])
    @jwt_required()
    def update_frame(frame_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_payload()
        if "name" in payload and not safe_string(payload.get("name")):
            return jsonify({"message": "Please provide a name for the frame."}), 400
        if "price" in payload:
            payload["price"], price_error = parse_price(payload)
            if price_error:
                return jsonify({"message": price_error}), 400
        if "availableSizes" in payload:
            payload["availableSizes"] = parse_json_list(payload.get("availableSizes"))

        existing = frames.find_document(frame_id)
        if not existing:
            return jsonify({"message": "Frame not found."}), 404

        upload = uploaded_file()
        if upload:
            try:
                payload["image"] = storage.upload(
                    upload, storage.frame_key(str(existing["_id"]), upload), upload_base_url()
                )
            except UploadError as exc:
                return jsonify({"message": str(exc)}), 400

        frame = frames.update(frame_id, frames.clean_fields(payload))
        if not frame:
            return jsonify({"message": "Frame not found."}), 404
        previous_image = existing.get("image")
        if upload and previous_image and previous_image != frame["image"]:
            remove_stored_image(previous_image)
        return jsonify({"message": "Frame updated.", "frame": frame})

    @app.route("/api/admin/frames/<frame_id>/image", methods=["PUT"])
    @jwt_required()
    def relink_frame_image(frame_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        existing = frames.find_document(frame_id)
        if not existing:
            return jsonify({"message": "Frame not found."}), 404

        upload = uploaded_file()
        if not upload:
            return jsonify({"message": "An image file is required."}), 400
        try:
            image_url = storage.upload(
                upload, storage.frame_key(str(existing["_id"]), upload), upload_base_url()
            )
        except UploadError as exc:
            return jsonify({"message": str(exc)}), 400

        frame = frames.update(frame_id, {"image": image_url})
        if not frame:
            return jsonify({"message": "Frame not found."}), 404
        app.logger.info("Linked image to frame %s", frame_id)
        return jsonify({"message": "Frame image updated.", "frame": frame})

    @app.route("/api/admin/frames/<frame_id>", methods=["DELETE"])
    @jwt_required()
    def delete_frame(frame_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        frame_document = frames.delete(frame_id)
        if not frame_document:
            return jsonify({"message": "Frame not found."}), 404

        remove_stored_image(frame_document.get("image"))
        app.logger.info("Deleted frame %s", frame_id)
        return jsonify({"message": "Frame removed successfully."})

    # Users

    @app.route("/api/admin/users", methods=["GET"])
    @jwt_required()
    def list_users():
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error
        return jsonify({"users": users.list_all()})

    @app.route("/api/admin/users/<user_id>", methods=["PUT"])
    @jwt_required()
    def update_user(user_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        payload = read_json_object()
        editable = {
            field: payload[field] for field in USER_EDITABLE_FIELDS if field in payload
        }
        if not editable:
            return jsonify({"message": "No profile fields to update."}), 400
        if "email" in editable and not is_valid_email(editable["email"]):
            return jsonify({"message": "Please enter a valid email address"}), 400
        if "firstName" in editable and not safe_string(editable["firstName"]):
            return jsonify({"message": "First name cannot be empty"}), 400
        if "lastName" in editable and not safe_string(editable["lastName"]):
            return jsonify({"message": "Last name cannot be empty"}), 400

        user = users.update(user_id, users.clean_fields(editable))
        if not user:
            return jsonify({"message": "User not found."}), 404
        return jsonify({"message": "User updated.", "user": user})

    @app.route("/api/admin/users/<user_id>", methods=["DELETE"])
    @jwt_required()
    def delete_user(user_id: str):
        _, admin_error = require_admin_session()
        if admin_error:
            return admin_error

        user_document = users.delete(user_id)
        if not user_document:
            return jsonify({"message": "User not found."}), 404
        app.logger.info("Deleted user %s", user_id)
        return jsonify({"message": "User deleted."})

    # Privileged call

    @app.route("/api/functions/setAdminRole", methods=["POST"])
    @jwt_required()
    def set_admin_role():
        payload = read_json_object()
        data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
        try:
            result = grant_admin_role(db.users, get_jwt(), data.get("userId"))
        except RoleAssignmentError as exc:
            app.logger.warning("setAdminRole rejected (%s): %s", exc.code, exc.message)
            return jsonify(exc.to_json()), exc.status_code

        app.logger.info("Granted admin role to user %s", data.get("userId"))
        return jsonify({"result": result})

    # --- Maintenance commands ---

    @app.cli.command("migrate-orders")
    @click.option("--dry-run", is_flag=True, help="Report without writing.")
    def migrate_orders_command(dry_run):
        """Rewrite legacy nested orders in the flat shape."""
        migrated = 0
        for document in db.orders.find():
            try:
                update = migrate_order_document(document)
            except MissingOrderIdentifier as exc:
                app.logger.warning("Skipping order record during migration: %s", exc)
                continue
            if not update:
                continue
            migrated += 1
            if not dry_run:
                db.orders.update_one({"_id": document["_id"]}, {"$set": update})

        verb = "Would migrate" if dry_run else "Migrated"
        click.echo(f"{verb} {migrated} legacy order(s).")

    @app.cli.command("sweep-pending-frames")
    @click.option("--older-than", default=30, show_default=True, help="Minutes.")
    @click.option("--delete", "delete_pending", is_flag=True, help="Delete them.")
    def sweep_pending_frames_command(older_than, delete_pending):
        """List (or delete) frames whose image upload never completed."""
        cutoff = utcnow() - timedelta(minutes=older_than)
        stale = []
        for document in frames.pending_image_documents():
            created_at = document.get("createdAt")
            if isinstance(created_at, datetime) and created_at > cutoff:
                continue
            stale.append(document)

        for document in stale:
            app.logger.warning(
                "Frame %s (%s) has no image", document["_id"], document.get("name", "")
            )
            click.echo(f"{document['_id']}\t{document.get('name', '')}")
            if delete_pending:
                db.frames.delete_one({"_id": document["_id"]})

        verb = "Deleted" if delete_pending else "Found"
        click.echo(f"{verb} {len(stale)} frame(s) without an image.")

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
