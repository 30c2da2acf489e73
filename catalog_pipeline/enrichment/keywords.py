"""
Keyword Dictionaries
====================

Rule tables used by the signal harvester. Keywords are matched as
substrings of accent-free, lowercased text, so they are written without
accents unless a variant with the accent is listed on purpose.

Category rules are ordered: the first matching rule wins.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KeywordRule:
    """Maps a taxonomy key to the keywords that signal it."""

    key: str
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class CategoryKeywordRule:
    """Maps keywords to a category, optional subcategory and product type."""

    category: str
    keywords: tuple[str, ...]
    subcategory: str | None = None
    product_type: str | None = None


CATEGORY_KEYWORD_RULES: tuple[CategoryKeywordRule, ...] = (
    CategoryKeywordRule(
        category="joyeria_y_bisuteria",
        subcategory="aretes_pendientes",
        product_type="aretes",
        keywords=("arete", "aretes", "pendiente", "pendientes", "argolla", "argollas", "topo", "topos"),
    ),
    CategoryKeywordRule(
        category="joyeria_y_bisuteria",
        subcategory="anillos",
        product_type="anillo",
        keywords=("anillo", "anillos", "ring", "rings"),
    ),
    CategoryKeywordRule(
        category="joyeria_y_bisuteria",
        subcategory="collares",
        product_type="collar",
        keywords=("collar", "collares", "cadena", "cadenas", "gargantilla"),
    ),
    CategoryKeywordRule(
        category="joyeria_y_bisuteria",
        subcategory="pulseras_brazaletes",
        product_type="pulsera",
        keywords=("pulsera", "pulseras", "brazalete", "brazaletes"),
    ),
    CategoryKeywordRule(
        category="joyeria_y_bisuteria",
        subcategory="piercings",
        product_type="piercing",
        keywords=("piercing", "piercings", "barbell", "ear cuff"),
    ),
    CategoryKeywordRule(
        category="calzado",
        product_type="calzado",
        keywords=(
            "zapato", "zapatos", "tenis", "sneaker", "sneakers", "sandalia", "sandalias",
            "tacon", "tacones", "bota", "botas", "botin", "botines", "loafer", "mocasin",
            "mocasines", "alpargata",
        ),
    ),
    CategoryKeywordRule(
        category="bolsos_y_marroquineria",
        product_type="bolso",
        keywords=(
            "bolso", "bolsos", "cartera", "carteras", "mochila", "morral", "rinonera",
            "riñonera", "crossbody", "bandolera", "clutch", "billetera", "estuche", "neceser",
            "cosmetiquera", "maleta", "equipaje", "duffel", "llavero",
        ),
    ),
    CategoryKeywordRule(
        category="gafas_y_optica",
        product_type="gafas",
        keywords=("gafas", "lentes", "lente", "montura", "optica", "sunglasses", "goggles"),
    ),
    CategoryKeywordRule(
        category="camisetas_y_tops",
        product_type="top",
        keywords=(
            "camiseta", "tshirt", "t shirt", "top", "croptop", "crop top", "camisilla",
            "esqueleto", "tank",
        ),
    ),
    CategoryKeywordRule(
        category="camisas_y_blusas",
        product_type="camisa",
        keywords=("camisa", "camisas", "blusa", "blusas", "shirt", "guayabera"),
    ),
    CategoryKeywordRule(
        category="buzos_hoodies_y_sueteres",
        product_type="buzo",
        keywords=("buzo", "hoodie", "sweatshirt", "sueter", "sweater", "cardigan", "knit"),
    ),
    CategoryKeywordRule(
        category="chaquetas_y_abrigos",
        product_type="chaqueta",
        keywords=(
            "chaqueta", "abrigo", "coat", "jacket", "parka", "trench", "rompevientos",
            "impermeable",
        ),
    ),
    CategoryKeywordRule(
        category="blazers_y_sastreria",
        product_type="blazer",
        keywords=("blazer", "sastreria", "saco formal", "tuxedo", "smoking"),
    ),
    CategoryKeywordRule(
        category="vestidos",
        product_type="vestido",
        keywords=("vestido", "dress", "midi", "maxi vestido"),
    ),
    CategoryKeywordRule(
        category="enterizos_y_overoles",
        product_type="enterizo",
        keywords=("enterizo", "jumpsuit", "overol", "overall", "romper", "jardinera"),
    ),
    CategoryKeywordRule(
        category="pantalones_no_denim",
        product_type="pantalon",
        keywords=("pantalon", "pantalones", "trouser", "jogger", "palazzo", "culotte", "cargo"),
    ),
    CategoryKeywordRule(
        category="jeans_y_denim",
        product_type="jeans",
        keywords=("jean", "jeans", "denim"),
    ),
    CategoryKeywordRule(
        category="shorts_y_bermudas",
        product_type="short",
        keywords=("short", "shorts", "bermuda", "bermudas"),
    ),
    CategoryKeywordRule(
        category="faldas",
        product_type="falda",
        keywords=("falda", "faldas", "skirt", "skirts"),
    ),
    CategoryKeywordRule(
        category="trajes_de_bano_y_playa",
        product_type="traje de bano",
        keywords=(
            "bikini", "trikini", "tankini", "traje de bano", "banador", "bañador", "pareo",
            "rashguard",
        ),
    ),
    CategoryKeywordRule(
        category="accesorios_textiles_y_medias",
        product_type="accesorio textil",
        keywords=(
            "medias", "calcetin", "calcetines", "bufanda", "panuelo", "pañuelo", "gorra",
            "sombrero", "bandana", "cinturon", "diadema", "balaca",
        ),
    ),
    CategoryKeywordRule(
        category="hogar_y_lifestyle",
        product_type="hogar",
        keywords=(
            "vela", "difusor", "ambientador", "poster", "agenda", "cuaderno", "vajilla",
            "botella", "termo",
        ),
    ),
)

MATERIAL_KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("algodon", ("algodon", "algodón", "cotton")),
    KeywordRule("lino", ("lino", "linen")),
    KeywordRule("denim", ("denim", "jean", "jeans")),
    KeywordRule("cuero", ("cuero", "leather", "polipiel")),
    KeywordRule("seda", ("seda", "silk")),
    KeywordRule("lana", ("lana", "wool")),
    KeywordRule("poliester", ("poliester", "poliéster", "polyester")),
    KeywordRule("viscosa", ("viscosa", "viscose", "rayon")),
    KeywordRule("nylon", ("nylon",)),
    KeywordRule("elastano", ("elastano", "elastane", "spandex", "lycra")),
    KeywordRule("oro", ("oro", "gold", "quilates", "18k", "14k")),
    KeywordRule("plata", ("plata", "silver", "925")),
    KeywordRule("acero", ("acero", "stainless steel", "acero quirurgico")),
    KeywordRule("bronce", ("bronce",)),
    KeywordRule("cobre", ("cobre", "copper")),
    KeywordRule("circonia", ("circonia", "zirconia")),
)

PATTERN_KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("rayas", ("raya", "rayas", "stripe", "stripes")),
    KeywordRule("flores", ("flor", "floral", "flores")),
    KeywordRule("cuadros", ("cuadro", "cuadros", "plaid", "tartan")),
    KeywordRule("animal_print", ("animal print", "leopardo", "cebra", "tigre")),
    KeywordRule("puntos", ("puntos", "polka dot", "dot")),
    KeywordRule("geometrico", ("geometrico", "geométrico", "geometric")),
    KeywordRule("estampado", ("estampado", "print")),
    KeywordRule("liso", ("liso", "solid", "plain")),
)

GENDER_KEYWORD_RULES: tuple[KeywordRule, ...] = (
    KeywordRule("femenino", ("mujer", "women", "dama", "ladies")),
    KeywordRule("masculino", ("hombre", "men", "caballero")),
    KeywordRule("infantil", ("nino", "niño", "nina", "niña", "kids", "infantil")),
    KeywordRule("no_binario_unisex", ("unisex",)),
)

GENDER_VALUES = ("masculino", "femenino", "no_binario_unisex", "infantil")


def collect_by_rules(text: str, rules: tuple[KeywordRule, ...]) -> list[str]:
    """Keys of every rule with at least one keyword in text, in rule order."""
    return [rule.key for rule in rules if any(keyword in text for keyword in rule.keywords)]
