# vitrine/core/forms.py
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import (
    StringField, BooleanField, IntegerField, SelectField, DateTimeField,
    TextAreaField, DecimalField
)
from wtforms.fields.core import Field
from wtforms.validators import (
    DataRequired, InputRequired, Optional as Opt, Length, NumberRange, Email,
    Regexp, ValidationError
)


# =============================================================================
# Utilidades
# =============================================================================

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def parse_decimal(text: Optional[str]) -> Decimal:
    """
    Converte string para Decimal (2 casas) aceitando vírgula ou ponto.
    "1.234,56" -> 1234.56
    """
    s = str(text).strip()
    s = s.replace(".", "").replace(",", ".") if s.count(",") == 1 and s.count(".") > 0 else s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError("Valor numérico inválido")
    if not d.is_finite():
        raise ValueError("Valor numérico inválido")
    return _q2(d)

def _as_text(value) -> str:
    if isinstance(value, bool):
        return "y" if value else "false"
    return str(value)

def json_formdata(payload: Optional[Dict[str, Any]]) -> MultiDict:
    """Corpo JSON -> MultiDict para os forms (listas viram valores repetidos)."""
    md = MultiDict()
    for k, v in (payload or {}).items():
        if v is None or isinstance(v, dict):
            continue
        if isinstance(v, (list, tuple)):
            for item in v:
                md.add(k, _as_text(item))
        else:
            md.add(k, _as_text(v))
    return md

DATETIME_FORMATS = ["%Y-%m-%dT%H:%M:%S.%f", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S", "%Y-%m-%d"]

# Formatos aceitos por tipo de chave PIX (aleatória aceita qualquer valor)
PIX_KEY_PATTERNS = {
    "email": re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$"),
    "phone": re.compile(r"^(\+55)?\s?(\(?\d{2}\)?)?\s?9?\d{4}[-.\s]?\d{4}$"),
    "cpf": re.compile(r"^\d{3}\.?\d{3}\.?\d{3}-?\d{2}$"),
    "cnpj": re.compile(r"^\d{2}\.?\d{3}\.?\d{3}/?\d{4}-?\d{2}$"),
}

PIX_KEY_TYPE_CHOICES = [
    ("email", "E-mail"), ("phone", "Telefone"), ("cpf", "CPF"),
    ("cnpj", "CNPJ"), ("random", "Chave aleatória"),
]

SHIPPING_METHOD_CHOICES = [
    ("fixed", "Preço fixo"), ("regional_table", "Tabela regional"),
    ("weight_based", "Por peso"), ("free", "Frete grátis"),
]

DISCOUNT_TYPE_CHOICES = [
    ("percentage", "Percentual"), ("fixed", "Valor fixo"), ("shipping", "Frete grátis"),
]


# =============================================================================
# Campos customizados
# =============================================================================

class DecimalMoneyField(Field):
    """
    Entrada textual que vira Decimal com 2 casas. Ausente/vazio mantém o default.
    """
    def _value(self):
        return str(self.data) if isinstance(self.data, Decimal) else (self.data or "")

    def process_formdata(self, valuelist):
        if valuelist and str(valuelist[0]).strip():
            self.data = parse_decimal(valuelist[0])

class StringListField(Field):
    def process_formdata(self, valuelist):
        self.data = [v.strip() for v in valuelist if v and v.strip()]

class IntegerListField(Field):
    def process_formdata(self, valuelist):
        try:
            self.data = [int(v) for v in valuelist if str(v).strip()]
        except ValueError:
            self.data = []
            raise ValueError("Lista deve conter apenas números inteiros")


# =============================================================================
# Lojas
# =============================================================================

class StoreForm(FlaskForm):
    name = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    slug = StringField("Slug", validators=[Opt(), Length(max=80), Regexp(r"^[a-z0-9-]+$", message="Use apenas letras minúsculas, números e hífen")])
    description = TextAreaField("Descrição", validators=[Opt(), Length(max=2000)])
    contact_email = StringField("E-mail de contato", validators=[DataRequired(), Email(), Length(max=180)])
    phone = StringField("Telefone", validators=[Opt(), Length(max=40)])
    whatsapp = StringField("WhatsApp", validators=[Opt(), Length(max=40)])
    instagram = StringField("Instagram", validators=[Opt(), Length(max=80)])
    address = StringField("Endereço", validators=[Opt(), Length(max=255)])

class PixKeyForm(FlaskForm):
    type = SelectField("Tipo", choices=PIX_KEY_TYPE_CHOICES, validators=[DataRequired()])
    key = StringField("Chave", validators=[DataRequired(), Length(max=77)])
    description = StringField("Descrição", validators=[Opt(), Length(max=120)])

    def validate_key(self, field):
        pattern = PIX_KEY_PATTERNS.get(self.type.data)
        if pattern and not pattern.match(field.data.strip()):
            raise ValidationError("Formato de chave PIX inválido para o tipo selecionado")

class ShippingSettingsForm(FlaskForm):
    enabled = BooleanField("Frete ativo", default=True)
    calculation_method = SelectField("Método de cálculo", choices=SHIPPING_METHOD_CHOICES, default="fixed")
    fixed_price = DecimalMoneyField("Preço fixo", validators=[Opt(), NumberRange(min=0)])
    free_shipping_threshold = DecimalMoneyField("Frete grátis a partir de", validators=[Opt(), NumberRange(min=0)])
    pickup_enabled = BooleanField("Retirada na loja")
    pickup_message = StringField("Mensagem de retirada", validators=[Opt(), Length(max=255)])

class RegionalRateForm(FlaskForm):
    id = StringField("Identificador", validators=[DataRequired(), Length(max=40), Regexp(r"^[A-Za-z0-9_-]+$", message="Use apenas letras, números, hífen e sublinhado")])
    name = StringField("Região", validators=[DataRequired(), Length(max=80)])
    states = StringListField("UFs", default=list)
    price = DecimalMoneyField("Preço", validators=[InputRequired(), NumberRange(min=0)])
    delivery_days = StringField("Prazo", validators=[Opt(), Length(max=40)])

    def validate_states(self, field):
        if not field.data:
            raise ValidationError("Informe ao menos uma UF")
        if not all(re.match(r"^[A-Za-z]{2}$", uf) for uf in field.data):
            raise ValidationError("UF inválida")

class WeightRateForm(FlaskForm):
    id = StringField("Identificador", validators=[DataRequired(), Length(max=40), Regexp(r"^[A-Za-z0-9_-]+$", message="Use apenas letras, números, hífen e sublinhado")])
    min_weight = DecimalField("Peso mínimo (kg)", places=3, validators=[InputRequired(), NumberRange(min=0)])
    max_weight = DecimalField("Peso máximo (kg)", places=3, validators=[InputRequired(), NumberRange(min=0)])
    price = DecimalMoneyField("Preço", validators=[InputRequired(), NumberRange(min=0)])

    def validate_max_weight(self, field):
        if self.min_weight.data is not None and field.data is not None and field.data < self.min_weight.data:
            raise ValidationError("Peso máximo deve ser maior ou igual ao mínimo")


# =============================================================================
# Catálogo
# =============================================================================

class ProductForm(FlaskForm):
    name = StringField("Nome", validators=[DataRequired(), Length(max=200)])
    description = TextAreaField("Descrição", validators=[Opt(), Length(max=5000)])
    category = StringField("Categoria", validators=[Opt(), Length(max=80)])
    price = DecimalMoneyField("Preço", validators=[InputRequired()])
    weight = DecimalField("Peso (kg)", places=3, validators=[Opt(), NumberRange(min=0)])
    initial_stock = IntegerField("Estoque inicial", validators=[Opt(), NumberRange(min=0)])

    def validate_price(self, field):
        if field.data is None or field.data < 0:
            raise ValidationError("Preço inválido")

class VariantOptionForm(FlaskForm):
    name = StringField("Nome", validators=[DataRequired(), Length(max=120)])
    sku = StringField("SKU", validators=[DataRequired(), Length(max=60)])
    price = DecimalMoneyField("Preço", validators=[Opt()])
    compare_price = DecimalMoneyField("Preço comparativo", validators=[Opt()])
    weight = DecimalField("Peso (kg)", places=3, validators=[Opt(), NumberRange(min=0)])
    stock = IntegerField("Estoque inicial", validators=[Opt(), NumberRange(min=0)])


# =============================================================================
# Cupons
# =============================================================================

class CouponForm(FlaskForm):
    code = StringField("Código", validators=[DataRequired(), Length(max=40), Regexp(r"^[A-Za-z0-9_-]+$", message="Use apenas letras, números, hífen e sublinhado")])
    description = StringField("Descrição", validators=[Opt(), Length(max=255)])
    discount_type = SelectField("Tipo", choices=DISCOUNT_TYPE_CHOICES, validators=[DataRequired()])
    discount_value = DecimalMoneyField("Valor", validators=[InputRequired()])
    min_order_value = DecimalMoneyField("Pedido mínimo", validators=[Opt()])
    max_discount = DecimalMoneyField("Desconto máximo", validators=[Opt()])
    usage_limit = IntegerField("Limite de usos", validators=[Opt(), NumberRange(min=1)])
    valid_from = DateTimeField("Válido de", format=DATETIME_FORMATS, validators=[DataRequired()])
    valid_until = DateTimeField("Válido até", format=DATETIME_FORMATS, validators=[DataRequired()])
    is_active = BooleanField("Ativo", default=True)
    applicable_categories = StringListField("Categorias", default=list)
    excluded_products = IntegerListField("Produtos excluídos", default=list)

    def validate_discount_value(self, field):
        if field.data is None or field.data < 0:
            raise ValidationError("Valor do desconto inválido")
        if self.discount_type.data == "percentage" and field.data > 100:
            raise ValidationError("Desconto percentual não pode ser maior que 100%")

    def validate_valid_until(self, field):
        if self.valid_from.data and field.data and field.data <= self.valid_from.data:
            raise ValidationError("Data de término deve ser posterior à data de início")


# =============================================================================
# Estoque
# =============================================================================

class StockAdjustForm(FlaskForm):
    variant_option_id = IntegerField("Variante", validators=[Opt()])
    delta = IntegerField("Quantidade", validators=[InputRequired()])
    reason = StringField("Motivo", validators=[DataRequired(), Length(max=200)])


# =============================================================================
# Checkout
# =============================================================================

class CartItemForm(FlaskForm):
    product_id = IntegerField("Produto", validators=[InputRequired()])
    variant_option_id = IntegerField("Variante", validators=[Opt()])
    quantity = IntegerField("Quantidade", validators=[InputRequired(), NumberRange(min=1)])

class CouponCheckForm(FlaskForm):
    code = StringField("Cupom", validators=[DataRequired(), Length(max=40)])

class ShippingQuoteForm(FlaskForm):
    state = StringField("UF", validators=[Opt(), Length(min=2, max=2)])

class CheckoutForm(FlaskForm):
    customer_name = StringField("Nome", validators=[DataRequired(), Length(max=180)])
    customer_email = StringField("E-mail", validators=[DataRequired(), Email(), Length(max=180)])
    customer_phone = StringField("Telefone", validators=[DataRequired(), Length(max=40)])
    address = StringField("Endereço", validators=[Opt(), Length(max=255)])
    city = StringField("Cidade", validators=[Opt(), Length(max=80)])
    state = StringField("UF", validators=[Opt(), Length(min=2, max=2)])
    zip_code = StringField("CEP", validators=[Opt(), Regexp(r"^\d{5}-?\d{3}$", message="CEP inválido")])
    shipping_option_id = StringField("Frete", validators=[Opt(), Length(max=40)])
    coupon_code = StringField("Cupom", validators=[Opt(), Length(max=40)])


# =============================================================================
# Pedidos
# =============================================================================

class OrderStatusForm(FlaskForm):
    status = SelectField("Status", choices=[
        ("confirmed", "Confirmado"), ("preparing", "Em preparo"), ("shipped", "Enviado"),
        ("delivered", "Entregue"), ("cancelled", "Cancelado"),
    ], validators=[DataRequired()])
