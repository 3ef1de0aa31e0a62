import structlog

from app.domain.schemas import ClientRecord, PortfolioSnapshot

logger = structlog.get_logger()


class RecordMerger:
    """Folds a parsed snapshot into the owning client aggregate."""

    def merge(self, client: ClientRecord, snapshot: PortfolioSnapshot) -> ClientRecord:
        """
        Attach the snapshot to the CAS record and backfill the client's PAN.

        An already-set PAN is never overwritten. Merging the same snapshot
        twice leaves the client unchanged.
        """
        client.cas.parsed_data = snapshot

        identity_number = snapshot.investor.identity_number
        if identity_number and not client.pan_number:
            client.pan_number = identity_number.strip().upper()
            logger.info("client_pan_backfilled_from_cas", client_id=client.id)
        elif identity_number and client.pan_number != identity_number.strip().upper():
            logger.warning("cas_pan_mismatch", client_id=client.id)

        return client
