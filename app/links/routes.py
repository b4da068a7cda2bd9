# app/links/routes.py
from flask import jsonify, request
from flask_login import current_user, login_required

from app.errors import Forbidden, NotFound, ValidationFailed
from app.extensions import db
from app.models import Activity, Link
from app.services.activity import recompute_link_totals
from app.utils import validated
from . import links_bp
from .forms import LinkCreateForm, LinkUpdateForm


def _own_link(link_id: int) -> Link:
    link = db.session.get(Link, link_id)
    if link is None:
        raise NotFound("Link not found.")
    if link.user_id != current_user.id:
        raise Forbidden("Forbidden")
    return link


@links_bp.route("", methods=["GET"])
@login_required
def list_links():
    query = Link.query.filter_by(user_id=current_user.id)
    if request.args.get("include_deleted") not in ("1", "true"):
        query = query.filter(Link.is_deleted.is_(False))
    links = query.order_by(Link.created_at.desc()).all()
    return jsonify({"success": True, "links": [link.to_dict() for link in links]})


@links_bp.route("", methods=["POST"])
@login_required
def create_link():
    form = validated(LinkCreateForm())

    slug = form.slug.data.strip().lower()
    if Link.query.filter_by(slug=slug).first():
        raise ValidationFailed("That link is already taken.", field="slug")

    link = Link(
        user_id=current_user.id,
        slug=slug,
        name=(form.name.data or "").strip() or None,
        price=form.price.data,
    )
    db.session.add(link)
    db.session.commit()
    return jsonify({"success": True, "link": link.to_dict()}), 201


@links_bp.route("/<int:link_id>", methods=["GET"])
@login_required
def get_link(link_id: int):
    return jsonify({"success": True, "link": _own_link(link_id).to_dict()})


@links_bp.route("/<int:link_id>", methods=["PATCH"])
@login_required
def update_link(link_id: int):
    link = _own_link(link_id)
    form = validated(LinkUpdateForm())

    if form.name.raw_data:
        link.name = (form.name.data or "").strip() or None
    if form.price.data is not None:
        link.price = form.price.data

    db.session.commit()
    return jsonify({"success": True, "link": link.to_dict()})


@links_bp.route("/<int:link_id>", methods=["DELETE"])
@login_required
def delete_link(link_id: int):
    # Soft delete only: earnings and history stay attached to the link
    link = _own_link(link_id)
    link.is_deleted = True
    db.session.commit()
    return jsonify({"success": True})


@links_bp.route("/<int:link_id>/activity", methods=["GET"])
@login_required
def link_activity(link_id: int):
    link = _own_link(link_id)

    skip = max(request.args.get("skip", 0, type=int), 0)
    take = min(max(request.args.get("take", 20, type=int), 1), 100)

    query = Activity.query.filter_by(link_id=link.id)
    total_count = query.count()
    activities = (
        query.order_by(Activity.created_at.desc(), Activity.id.desc())
        .offset(skip)
        .limit(take)
        .all()
    )

    return jsonify({
        "success": True,
        "activities": [a.to_dict() for a in activities],
        "hasMore": skip + take < total_count,
        "totalCount": total_count,
    })


@links_bp.route("/<int:link_id>/recompute", methods=["POST"])
@login_required
def recompute(link_id: int):
    link = _own_link(link_id)
    result = recompute_link_totals(link.id)
    return jsonify({"success": True, "drift": result["drift"], "link": link.to_dict()})
