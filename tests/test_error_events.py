from grocery_crawler.monitoring import build_error_event


def test_stage_supplies_default_actions():
    event = build_error_event(
        error_type="TransientFetchError",
        error_source="CrawlOrchestrator.category",
        url="https://shop.example/category/dairy",
        job_id="job-1",
        stage="category",
    )

    assert event["action_required"] == ["retry_category"]
    assert event["job_id"] == "job-1"
    assert "details" not in event
    assert event["timestamp"]


def test_explicit_actions_and_details_win():
    event = build_error_event(
        error_type="ConnectTimeout",
        error_source="httpx.Client.get",
        stage="network",
        action_required="increase_timeout",
        metadata={"timeout_sec": 10},
    )

    assert event["action_required"] == ["increase_timeout"]
    assert event["details"] == {"timeout_sec": 10}
    assert "url" not in event
