from stockbot.warehouses import UNSPECIFIED, normalize_code, warehouse_code, warehouse_label


def test_label_lookup():
    assert warehouse_label("main") == "總倉"
    assert warehouse_label("main_warehouse") == "總倉"
    assert warehouse_label("withdraw") == "撤台"
    assert warehouse_label("custom_x") == "custom_x"
    assert warehouse_label("") == "未指定"


def test_code_lookup():
    assert warehouse_code("MAIN") == "main"
    assert warehouse_code("main_warehouse") == "main"
    assert warehouse_code("總倉") == "main"
    assert warehouse_code("夾換品") == "swap"
    assert warehouse_code("倉X") == UNSPECIFIED
    assert warehouse_code(None) == UNSPECIFIED


def test_normalize_code():
    assert normalize_code(" Main_Warehouse ") == "main"
    assert normalize_code(None) == UNSPECIFIED
    assert normalize_code("swap") == "swap"
