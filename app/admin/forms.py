from wtforms import IntegerField, SelectField, StringField
from wtforms.validators import DataRequired, Length, NumberRange

from app.utils import ApiForm


class ResolveWithdrawalForm(ApiForm):
    action = SelectField("Action", choices=[("settle", "Settle"), ("fail", "Fail")], validators=[DataRequired()])
    transfer_id = StringField("Transfer id", validators=[Length(max=80)])
    note = StringField("Note", validators=[Length(max=250)])


class PlatformFeeForm(ApiForm):
    platform_fee = IntegerField("Platform fee %", validators=[NumberRange(min=0, max=100)])
