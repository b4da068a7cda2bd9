from decimal import Decimal

from flask import current_app
from wtforms import DecimalField, StringField
from wtforms.validators import DataRequired, Length, Optional, Regexp, ValidationError

from app.utils import ApiForm

SLUG_RE = r"^[a-z0-9][a-z0-9-]{2,63}$"


def _min_price(form, field):
    if field.data is None:
        return
    minimum = Decimal(str(current_app.config.get("MIN_LINK_PRICE", "5.00")))
    if field.data < minimum:
        raise ValidationError(f"Price must be at least ${minimum:,.2f}.")


class LinkCreateForm(ApiForm):
    slug = StringField("Slug", validators=[DataRequired(), Regexp(SLUG_RE, message="Use 3-64 lowercase letters, digits or dashes.")])
    name = StringField("Name", validators=[Optional(), Length(max=120)])
    price = DecimalField("Price", places=2, validators=[DataRequired(), _min_price])


class LinkUpdateForm(ApiForm):
    name = StringField("Name", validators=[Optional(), Length(max=120)])
    price = DecimalField("Price", places=2, validators=[Optional(), _min_price])
