from forkify_ingest.scraper import (
    clean_html_for_ai, find_images, parse_amount, parse_ingredient, prepare_page, schema_to_recipe
)


def test_parse_ingredient_with_unit():
    ing = parse_ingredient("400 g penne", 2)
    assert ing.amount == 400
    assert ing.unit == "g"
    assert ing.name == "penne"
    assert ing.order_index == 2


def test_parse_ingredient_fraction_and_no_unit():
    ing = parse_ingredient("1/2 onion")
    assert ing.amount == 0.5
    assert ing.unit is None
    assert ing.name == "onion"


def test_parse_ingredient_without_amount_keeps_text():
    ing = parse_ingredient("salt to taste")
    assert ing.amount is None
    assert ing.name == "salt to taste"


def test_parse_amount_rejects_garbage():
    assert parse_amount("1,5") == 1.5
    assert parse_amount("a/b") is None


def test_schema_to_recipe_maps_fields():
    recipe = schema_to_recipe(
        {
            "title": "Pasta Bake",
            "ingredients": ["400 g penne", "1 ball mozzarella"],
            "instructions_list": ["Boil.", " ", "Bake."],
            "yields": "4 servings",
            "prep_time": 15,
            "cook_time": 90,
            "total_time": 105,
            "keywords": "pasta, bake",
        }
    )
    assert recipe.title == "Pasta Bake"
    assert [s.step_number for s in recipe.instructions] == [1, 2]
    assert recipe.servings == 4
    assert recipe.prep_time == "15 min"
    assert recipe.cook_time == "1 h 30 min"
    assert recipe.extra_data["total_time"] == "1 h 45 min"
    assert recipe.ai_tags == ["pasta", "bake"]


def test_schema_without_title_is_not_a_recipe():
    assert schema_to_recipe({"ingredients": ["1 egg"]}) is None


def test_complete_schema_skips_extraction(fixture_html):
    page = prepare_page(fixture_html("pasta_bake.html"), "https://example.com/pasta-bake")
    assert page.kind == "schema"
    assert page.recipe.title == "Pasta Bake"
    assert len(page.recipe.ingredients) == 4
    assert len(page.recipe.instructions) == 3
    assert page.recipe.ingredients[0].name == "penne"
    assert page.images[0] == "https://example.com/images/pasta-bake.jpg"


def test_partial_schema_is_passed_as_context(fixture_html):
    page = prepare_page(fixture_html("partial_schema.html"), "https://example.com/lemon-tart")
    assert page.kind == "text"
    assert page.recipe is None
    assert page.text.startswith("STRUCTURED DATA FOUND:")
    assert "Lemon Tart" in page.text
    assert "PAGE CONTENT:" in page.text
    assert "blind-baked shell" in page.text


def test_page_without_schema_becomes_text(fixture_html):
    page = prepare_page(fixture_html("plain_recipe.html"), "https://blog.example.com/soup")
    assert page.kind == "text"
    assert "STRUCTURED DATA FOUND" not in page.text
    assert "Roast the tomatoes" in page.text


def test_page_text_is_truncated(fixture_html):
    page = prepare_page(fixture_html("plain_recipe.html"), "https://blog.example.com/soup", max_chars=20)
    assert len(page.text) <= 20


def test_clean_html_drops_page_chrome(fixture_html):
    text = clean_html_for_ai(fixture_html("plain_recipe.html"))
    assert "Grandma's Tomato Soup" in text
    assert "1 kg ripe tomatoes" in text
    assert "window.analytics" not in text
    assert "font-family" not in text
    assert "About" not in text
    assert "Buy our cookware" not in text
    assert "Popular posts" not in text
    assert "Copyright" not in text
    assert "tracking pixel" not in text


def test_find_images_resolves_and_filters(fixture_html):
    images = find_images(fixture_html("plain_recipe.html"), "https://blog.example.com/soup")
    assert images == ["https://blog.example.com/uploads/soup.jpg"]


def test_find_images_orders_schema_then_og(fixture_html):
    images = find_images(
        fixture_html("pasta_bake.html"),
        "https://example.com/pasta-bake",
        schema_image="https://example.com/images/pasta-bake.jpg",
    )
    assert images == [
        "https://example.com/images/pasta-bake.jpg",
        "https://example.com/images/pasta-bake-og.jpg",
        "https://example.com/images/pasta-bake-step.jpg",
    ]
