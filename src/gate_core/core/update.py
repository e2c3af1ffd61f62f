"""Pure gate state transition: ``update(msg, model) -> (model, cmd)``.

No I/O and no clock reads. Every message type has exactly one handler; the
``frozen`` latch is checked here, inside the single serialized reducer, so a
late timeout, connectivity change or network response can never move the
stage away from ACTIVE.
"""
from dataclasses import replace
from typing import Callable

from .messages import (
    AlertPermissionDenied,
    AlertPermissionGranted,
    AlertPermissionRequested,
    AlertPromptDismissed,
    Boot,
    ClearPendingResource,
    Cmd,
    ConfigLoaded,
    FetchResource,
    FetchResourceFailed,
    FetchResourceRequested,
    FetchResourceSucceeded,
    FetchTracking,
    FetchTrackingFailed,
    FetchTrackingRequested,
    FetchTrackingSucceeded,
    GoToMain,
    LinkingArrived,
    LoadConfig,
    LockRuntime,
    MarkFirstRunDone,
    MonitorNetwork,
    Msg,
    NetworkConnected,
    NetworkDisconnected,
    NoCmd,
    NotificationOpened,
    RegisterForNotifications,
    RequestPermission,
    SaveAlerts,
    SaveLinking,
    SaveMode,
    SavePendingResource,
    SaveResource,
    SaveTracking,
    ScheduleTimeout,
    Timeout,
    TrackingArrived,
    ValidateFailed,
    ValidateLiveness,
    ValidateRequested,
    ValidateSucceeded,
    batch,
)
from .model import (
    ACTIVE_MODE,
    AlertInfo,
    LinkingInfo,
    Model,
    Stage,
    TrackingInfo,
    merge_linking,
    stringify_payload,
)


Transition = tuple[Model, Cmd]


def update(msg: Msg, model: Model) -> Transition:
    """Compute the next model and the command to run for ``msg``.

    Args:
        msg: Incoming message
        model: Current model (not modified)

    Returns:
        (new model, command description)

    Raises:
        TypeError: If ``msg`` is not a known message type
    """
    handler = _HANDLERS.get(type(msg))
    if handler is None:
        raise TypeError(f"Unknown message type: {type(msg).__name__}")
    return handler(msg, model)


def should_run_organic_flow(model: Model) -> bool:
    """Organic installs on first run are enriched before deciding."""
    return model.config.first_run and model.tracking.is_organic


# =============================================================================
# HELPERS
# =============================================================================


def _with_stage(model: Model, stage: Stage) -> Model:
    """Move to ``stage`` unless a decision has already been reached."""
    if model.frozen:
        return model
    return replace(model, stage=stage)


def _activate(model: Model, resource: str) -> Model:
    return replace(model, stage=Stage.ACTIVE, resource=resource, frozen=True)


def _adopt_saved_or_fallback(model: Model) -> Transition:
    saved = model.config.saved_resource
    if saved:
        return _activate(model, saved), LockRuntime()
    return _with_stage(model, Stage.INACTIVE), NoCmd()


# =============================================================================
# LIFECYCLE
# =============================================================================


def _on_boot(msg: Boot, model: Model) -> Transition:
    return (
        _with_stage(model, Stage.BOOTING),
        batch(LoadConfig(), ScheduleTimeout(), MonitorNetwork()),
    )


def _on_timeout(msg: Timeout, model: Model) -> Transition:
    return _with_stage(model, Stage.INACTIVE), NoCmd()


def _on_config_loaded(msg: ConfigLoaded, model: Model) -> Transition:
    loaded = msg.config
    # Payloads delivered during this run are newer than the stored copies
    tracking = model.tracking if model.tracking.exists else TrackingInfo(dict(loaded.tracking))
    linking = model.linking if model.linking.exists else LinkingInfo(dict(loaded.linking))

    accepted = loaded.alerts.accepted
    rejected = loaded.alerts.rejected and not accepted

    config = replace(
        model.config,
        saved_resource=loaded.resource,
        mode=loaded.mode,
        first_run=loaded.first_run,
        pending_resource=model.config.pending_resource or loaded.pending_resource,
    )
    new_model = replace(
        model,
        config=config,
        tracking=tracking,
        linking=linking,
        alerts=AlertInfo(
            accepted=accepted,
            rejected=rejected,
            requested_at=loaded.alerts.requested_at,
        ),
    )
    return new_model, NoCmd()


def _on_go_to_main(msg: GoToMain, model: Model) -> Transition:
    return _with_stage(model, Stage.INACTIVE), NoCmd()


# =============================================================================
# DATA ARRIVAL
# =============================================================================


def _on_tracking_arrived(msg: TrackingArrived, model: Model) -> Transition:
    payload = stringify_payload(msg.payload)
    new_model = replace(model, tracking=TrackingInfo(payload))
    if model.frozen:
        return new_model, SaveTracking(payload)
    return new_model, batch(SaveTracking(payload), ValidateLiveness())


def _on_linking_arrived(msg: LinkingArrived, model: Model) -> Transition:
    payload = stringify_payload(msg.payload)
    return replace(model, linking=LinkingInfo(payload)), SaveLinking(payload)


def _on_notification_opened(msg: NotificationOpened, model: Model) -> Transition:
    if model.is_active:
        # Already decided: switch the surface, nothing left pending
        return replace(model, resource=msg.url), ClearPendingResource()

    config = replace(model.config, pending_resource=msg.url)
    return replace(model, config=config), SavePendingResource(msg.url)


# =============================================================================
# CONNECTIVITY
# =============================================================================


def _on_network_connected(msg: NetworkConnected, model: Model) -> Transition:
    if model.stage is Stage.OFFLINE:
        return _with_stage(model, Stage.INACTIVE), NoCmd()
    return model, NoCmd()


def _on_network_disconnected(msg: NetworkDisconnected, model: Model) -> Transition:
    return _with_stage(model, Stage.OFFLINE), NoCmd()


# =============================================================================
# VALIDATION
# =============================================================================


def _on_validate_requested(msg: ValidateRequested, model: Model) -> Transition:
    return _with_stage(model, Stage.VALIDATING), NoCmd()


def _on_validate_failed(msg: ValidateFailed, model: Model) -> Transition:
    return _with_stage(model, Stage.INACTIVE), NoCmd()


def _on_validate_succeeded(msg: ValidateSucceeded, model: Model) -> Transition:
    if model.frozen:
        return model, NoCmd()

    model = replace(model, stage=Stage.VALIDATED)

    pending = model.config.pending_resource
    if pending:
        config = replace(model.config, pending_resource=None)
        activated = _activate(replace(model, config=config), pending)
        return activated, batch(ClearPendingResource(), LockRuntime())

    if model.tracking.exists:
        if should_run_organic_flow(model):
            return model, FetchTracking(model.device_id)
        return model, FetchResource(dict(model.tracking.payload))

    return _adopt_saved_or_fallback(model)


# =============================================================================
# FETCHING
# =============================================================================


def _on_fetch_tracking_requested(msg: FetchTrackingRequested, model: Model) -> Transition:
    return model, NoCmd()


def _on_fetch_tracking_succeeded(msg: FetchTrackingSucceeded, model: Model) -> Transition:
    merged = merge_linking(msg.data, model.linking.payload)
    payload = stringify_payload(merged)
    new_model = replace(model, tracking=TrackingInfo(payload))
    if model.frozen:
        return new_model, SaveTracking(payload)
    return new_model, batch(SaveTracking(payload), FetchResource(merged))


def _on_fetch_tracking_failed(msg: FetchTrackingFailed, model: Model) -> Transition:
    return _with_stage(model, Stage.INACTIVE), NoCmd()


def _on_fetch_resource_requested(msg: FetchResourceRequested, model: Model) -> Transition:
    return model, NoCmd()


def _on_fetch_resource_succeeded(msg: FetchResourceSucceeded, model: Model) -> Transition:
    config = replace(
        model.config,
        saved_resource=msg.resource,
        mode=ACTIVE_MODE,
        first_run=False,
        pending_resource=None,
    )
    persist = (SaveResource(msg.resource), SaveMode(ACTIVE_MODE), MarkFirstRunDone())

    if model.frozen:
        # The surface already shows a decided resource; only remember this one
        return replace(model, config=config), batch(*persist)

    pending = model.config.pending_resource
    shown = pending or msg.resource
    new_model = _activate(replace(model, config=config), shown)
    extra = (ClearPendingResource(),) if pending else ()
    return new_model, batch(*persist, *extra, LockRuntime())


def _on_fetch_resource_failed(msg: FetchResourceFailed, model: Model) -> Transition:
    if model.frozen:
        return model, NoCmd()
    return _adopt_saved_or_fallback(model)


# =============================================================================
# ALERTS
# =============================================================================


def _save_alerts(alerts: AlertInfo) -> SaveAlerts:
    return SaveAlerts(
        accepted=alerts.accepted,
        rejected=alerts.rejected,
        requested_at=alerts.requested_at,
    )


def _on_permission_requested(msg: AlertPermissionRequested, model: Model) -> Transition:
    return model, RequestPermission()


def _on_permission_granted(msg: AlertPermissionGranted, model: Model) -> Transition:
    alerts = AlertInfo(accepted=True, rejected=False, requested_at=msg.at)
    return (
        replace(model, alerts=alerts),
        batch(_save_alerts(alerts), RegisterForNotifications()),
    )


def _on_permission_denied(msg: AlertPermissionDenied, model: Model) -> Transition:
    alerts = AlertInfo(accepted=False, rejected=True, requested_at=msg.at)
    return replace(model, alerts=alerts), _save_alerts(alerts)


def _on_prompt_dismissed(msg: AlertPromptDismissed, model: Model) -> Transition:
    alerts = AlertInfo(accepted=False, rejected=False, requested_at=msg.at)
    return replace(model, alerts=alerts), _save_alerts(alerts)


_HANDLERS: dict[type, Callable[..., Transition]] = {
    Boot: _on_boot,
    Timeout: _on_timeout,
    ConfigLoaded: _on_config_loaded,
    GoToMain: _on_go_to_main,
    TrackingArrived: _on_tracking_arrived,
    LinkingArrived: _on_linking_arrived,
    NotificationOpened: _on_notification_opened,
    NetworkConnected: _on_network_connected,
    NetworkDisconnected: _on_network_disconnected,
    ValidateRequested: _on_validate_requested,
    ValidateSucceeded: _on_validate_succeeded,
    ValidateFailed: _on_validate_failed,
    FetchTrackingRequested: _on_fetch_tracking_requested,
    FetchTrackingSucceeded: _on_fetch_tracking_succeeded,
    FetchTrackingFailed: _on_fetch_tracking_failed,
    FetchResourceRequested: _on_fetch_resource_requested,
    FetchResourceSucceeded: _on_fetch_resource_succeeded,
    FetchResourceFailed: _on_fetch_resource_failed,
    AlertPermissionRequested: _on_permission_requested,
    AlertPermissionGranted: _on_permission_granted,
    AlertPermissionDenied: _on_permission_denied,
    AlertPromptDismissed: _on_prompt_dismissed,
}
