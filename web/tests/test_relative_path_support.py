def test_state_store_allows_relative_db_path(tmp_path, monkeypatch):
    # Regression: os.makedirs(os.path.dirname(path)) crashes when path has no directory.
    monkeypatch.chdir(tmp_path)

    from interceptor.state_store import StateStore

    store = StateStore(db_path="state.db")
    store.set("config_url", "https://policy.example/config.yaml")

    assert (tmp_path / "state.db").exists()
    assert store.get("config_url") == "https://policy.example/config.yaml"


def test_rule_store_and_secret_allow_relative_paths(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    from interceptor.access_gate import get_or_create_secret_key
    from interceptor.rule_store import RuleStore

    RuleStore(db_path="rules.db").init_db()
    key = get_or_create_secret_key("flask_secret.key")

    assert (tmp_path / "rules.db").exists()
    assert (tmp_path / "flask_secret.key").exists()
    assert get_or_create_secret_key("flask_secret.key") == key
